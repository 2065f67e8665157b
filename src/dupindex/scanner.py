import logging
import os
from pathlib import Path
from typing import NamedTuple, TextIO

from .index.path import get_export_path, get_index_path
from .index.store import DuplicateGroup, FileRecord, IndexStore, StorageError
from .report.console import print_duplicates
from .report.export import export_csv
from .utils.hashing import DEFAULT_CHUNK_CAP, DEFAULT_HASH_ALGORITHM, fingerprint, get_hash_algorithm
from .utils.walker import WalkPolicy, walk_files

logger = logging.getLogger(__name__)


class ScanTargetError(ValueError):
    pass


class ScanTargetNotFound(ScanTargetError):
    pass


class ScanTargetNotADirectory(ScanTargetError):
    pass


def record_path(path: str | os.PathLike) -> str:
    """Text form of path for the index and reports.

    Bytes that are not valid UTF-8 become U+FFFD, so the result can always be stored
    and printed. The lossy form is only used for display; the file itself is read
    through the original path.
    """
    return os.fsencode(path).decode('utf-8', 'replace')


class ScanOptions(NamedTuple):
    """Options for a scan."""
    index_directory: Path  # Directory the index file is created in
    keep_index: bool = False  # Keep the index file after the scan
    export_csv: bool = False  # Export every indexed file to a CSV next to the index
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    chunk_cap: int = DEFAULT_CHUNK_CAP
    follow_symlinks: bool = False


class ScanSummary(NamedTuple):
    """Outcome of a scan."""
    indexed: int  # Files recorded in the index
    failed: int  # Files skipped because they could not be fingerprinted or inserted
    groups: list[DuplicateGroup]
    index_path: Path | None  # Kept index file, None when it was torn down
    export_path: Path | None  # CSV export, None when not requested or left incomplete


class Scanner:
    """Workflow orchestration for a duplicate scan of one directory tree.

    A scan runs strictly in sequence:
    1. validate the target directory
    2. create an empty index
    3. walk the tree, fingerprint each regular file and insert it into the index
    4. query the index for duplicate groups and print them
    5. export the index to CSV if requested
    6. keep or delete the index file

    Scanner never terminates the process. Fatal conditions surface as exceptions
    (ScanTargetError, StorageError, ExportError) for the caller to act on; per-file
    failures are logged as warnings and counted.
    """

    def __init__(self, target: str | os.PathLike, options: ScanOptions):
        """Initialize a scanner.

        Args:
            target: Directory tree to scan
            options: Scan options

        Raises:
            ValueError: Unknown hash algorithm
        """
        get_hash_algorithm(options.hash_algorithm)
        self._target = Path(target)
        self._options = options

    @property
    def target(self) -> Path:
        return self._target

    def validate_target(self):
        """Ensure the target exists and is a directory.

        Raises:
            ScanTargetNotFound: The target does not exist
            ScanTargetNotADirectory: The target is not a directory
        """
        if not self._target.exists():
            raise ScanTargetNotFound(f"The directory to scan ({self._target}) does not exist")

        if not self._target.is_dir():
            raise ScanTargetNotADirectory(f"The path to scan ({self._target}) is not a directory")

    def run(self, output: TextIO | None = None, timestamp_ms: int | None = None) -> ScanSummary:
        """Run the whole scan.

        Args:
            output: Stream for the report, defaults to sys.stdout
            timestamp_ms: Scan start time used to name the index, defaults to now

        Returns:
            ScanSummary of the scan

        Raises:
            ScanTargetError: The target is invalid. No index is created.
            StorageError: The index could not be created or queried
            ExportError: The CSV export could not be created
        """
        self.validate_target()

        index_path = get_index_path(self._options.index_directory, timestamp_ms)
        store = IndexStore(index_path, create=True)
        try:
            indexed, failed = self.index_tree(store)
            groups = store.group_duplicates()
            print_duplicates(groups, self._target, output)

            export_path = None
            if self._options.export_csv:
                export_path = get_export_path(index_path)
                if export_csv(store, export_path) is None:
                    export_path = None
                else:
                    self._announce(export_path, output)
        except BaseException:
            if self._options.keep_index:
                store.close()
            else:
                self._teardown(store)
            raise

        if self._options.keep_index:
            store.close()
            self._announce(index_path, output)
            kept_path = index_path
        else:
            self._teardown(store)
            kept_path = None

        return ScanSummary(indexed, failed, groups, kept_path, export_path)

    def index_tree(self, store: IndexStore) -> tuple[int, int]:
        """Fingerprint every regular file under the target and insert it into store.

        Returns:
            Tuple of (indexed, failed) file counts

        Raises:
            StorageError: The inserted records could not be committed
        """
        indexed = 0
        failed = 0
        policy = WalkPolicy(follow_symlinks=self._options.follow_symlinks)

        for file_path in walk_files(self._target, policy):
            try:
                size, digest = fingerprint(file_path, self._options.hash_algorithm, self._options.chunk_cap)
            except OSError as e:
                logger.warning(f"Unable to fingerprint {record_path(file_path)}: {e}")
                failed += 1
                continue

            try:
                store.insert(FileRecord(record_path(file_path), size, digest))
            except StorageError as e:
                logger.warning(str(e))
                failed += 1
                continue

            indexed += 1

        store.commit()
        logger.info(f"Indexed {indexed} files under {self._target} ({failed} skipped)")
        return indexed, failed

    @staticmethod
    def _teardown(store: IndexStore):
        try:
            store.remove()
        except StorageError as e:
            logger.warning(str(e))

    @staticmethod
    def _announce(path: Path, output: TextIO | None):
        print(f"Results available at {path}", file=output)
