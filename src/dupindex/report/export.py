"""Flat CSV export of an index."""

import csv
import logging
from pathlib import Path

from ..index.store import IndexStore
from .console import display_name, format_size

logger = logging.getLogger(__name__)

CSV_HEADER = ['name', 'path', 'size', 'size_human', 'digest']


class ExportError(Exception):
    pass


def export_csv(store: IndexStore, csv_path: Path) -> int | None:
    """Write one CSV row per indexed file, duplicate or not, in index order.

    Args:
        store: Index to export
        csv_path: Destination file, must not exist yet

    Returns:
        Number of rows written, excluding the header, or None when the written rows
        could not be flushed to disk. The file is then incomplete and a warning is logged.

    Raises:
        ExportError: The file could not be created or the header could not be written.
                     Failures on individual rows are logged and skipped.
        StorageError: The index could not be queried
    """
    try:
        f = open(csv_path, 'x', encoding='utf-8', newline='')
    except OSError as e:
        raise ExportError(f"Unable to create CSV file {csv_path}: {e}") from e

    rows = 0
    try:
        writer = csv.writer(f)
        try:
            writer.writerow(CSV_HEADER)
        except OSError as e:
            raise ExportError(f"Unable to write header to CSV file {csv_path}: {e}") from e

        for record in store.list_records():
            try:
                writer.writerow([
                    display_name(record.path),
                    record.path,
                    record.size,
                    format_size(record.size),
                    record.digest,
                ])
            except (OSError, csv.Error, UnicodeEncodeError) as e:
                logger.warning(f"Unable to export record for {record.path}: {e}")
                continue
            rows += 1

        try:
            f.flush()
        except OSError as e:
            logger.warning(f"Unable to flush CSV file {csv_path}: {e}")
            return None
    finally:
        try:
            f.close()
        except OSError as e:
            logger.warning(f"Unable to close CSV file {csv_path}: {e}")

    logger.info(f"Exported {rows} records to {csv_path}")
    return rows
