"""Path utilities for locating index artifacts."""

import sys
import time
from pathlib import Path

INDEX_SUFFIX = '.sqlite'
EXPORT_SUFFIX = '.csv'


def default_index_directory() -> Path:
    """Directory holding the running program, or the working directory when unknown.

    Index artifacts are placed next to the program so that they outlive the scanned
    tree and don't pollute it. Under ``python -m dupindex`` argv[0] points into the
    installed package, so the working directory is used instead.
    """
    program = sys.argv[0] if sys.argv else ''
    if not program or program == '-c' or Path(program).name == '__main__.py':
        return Path.cwd()
    return Path(program).absolute().parent


def get_index_path(index_directory: Path, timestamp_ms: int | None = None) -> Path:
    """Generate the index file path for a scan started at timestamp_ms.

    Args:
        index_directory: Directory to place the index in
        timestamp_ms: Milliseconds since the Unix epoch, defaults to now

    Returns:
        Path such as /path/to/dir/1730332456789.sqlite
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return index_directory / f'{timestamp_ms}{INDEX_SUFFIX}'


def get_export_path(index_path: Path) -> Path:
    """Generate the CSV export path sharing the index's base name.

    Examples:
        /path/to/1730332456789.sqlite -> /path/to/1730332456789.csv
    """
    return index_path.with_suffix(EXPORT_SUFFIX)
