import logging
import sqlite3
from pathlib import Path
from typing import Iterator, NamedTuple

logger = logging.getLogger(__name__)


class FileRecord(NamedTuple):
    """Fingerprint of one scanned file as stored in the index.

    Attributes:
        path: Path of the file as produced by the walk, treated as an opaque identifier
        size: File size in bytes
        digest: Content digest as lowercase hex
    """
    path: str
    size: int
    digest: str


class DuplicateGroup(NamedTuple):
    """All indexed files sharing one digest. Only formed for two or more members."""
    digest: str
    members: list[FileRecord]


class StorageError(Exception):
    pass


class IndexNotFound(StorageError, FileNotFoundError):
    pass


class IndexStore:
    """Append-only fingerprint table backed by a single SQLite file.

    Each scanned file becomes one row of the ``files`` table, identified by an
    auto-incrementing ``id`` that reflects insertion order. Rows are never updated or
    deleted individually; the whole file is removed on teardown when the index is not
    kept.

    Duplicate detection is a grouping query over the digest column: a digest found in
    more than one row forms a DuplicateGroup. Equal digests are taken as equal content;
    two different files whose digests collide are reported as duplicates.
    """
    TABLE_SCHEMA = '''
        CREATE TABLE files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            path TEXT,
            size INTEGER,
            digest TEXT
        )
    '''

    def __init__(self, index_path: str | Path, create: bool = True):
        """Create a new index or open an existing one.

        Args:
            index_path: Location of the SQLite file
            create: Create the file and its table. The path must not exist yet.

        Raises:
            StorageError: The index could not be created or opened, or the table could
                          not be created. A half-created file is removed.
            IndexNotFound: create=False and no file exists at index_path
        """
        self._index_path = Path(index_path)
        self._connection: sqlite3.Connection | None = None

        if create:
            self._create()
        else:
            self._open()

    def __del__(self):
        self.close()

    def __enter__(self):
        if self._connection is None:
            raise RuntimeError(f"Index {self._index_path} is closed")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def index_path(self) -> Path:
        return self._index_path

    @property
    def closed(self) -> bool:
        return self._connection is None

    def _create(self):
        if self._index_path.exists():
            raise StorageError(f"Index {self._index_path} already exists")

        try:
            connection = sqlite3.connect(self._index_path)
        except sqlite3.Error as e:
            raise StorageError(f"Unable to create index {self._index_path}: {e}") from e

        try:
            connection.execute(self.TABLE_SCHEMA)
            connection.commit()
        except sqlite3.Error as e:
            connection.close()
            self._index_path.unlink(missing_ok=True)
            raise StorageError(f"Unable to create table in index {self._index_path}: {e}") from e

        self._connection = connection
        logger.info(f"Created index {self._index_path}")

    def _open(self):
        if not self._index_path.is_file():
            raise IndexNotFound(f"Index {self._index_path} does not exist")

        try:
            self._connection = sqlite3.connect(self._index_path)
        except sqlite3.Error as e:
            raise StorageError(f"Unable to open index {self._index_path}: {e}") from e

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError(f"Index {self._index_path} is closed")
        return self._connection

    def insert(self, record: FileRecord):
        """Append a record.

        Raises:
            StorageError: The row could not be written, including paths that cannot be
                          encoded as UTF-8
        """
        connection = self._require_connection()
        try:
            connection.execute(
                'INSERT INTO files (path, size, digest) VALUES (?, ?, ?)',
                (record.path, record.size, record.digest))
        except (sqlite3.Error, OverflowError, UnicodeEncodeError) as e:
            raise StorageError(f"Unable to insert {record.path} into index: {e}") from e

    def commit(self):
        """Commit all inserted records to disk.

        Raises:
            StorageError: The transaction could not be committed
        """
        connection = self._require_connection()
        try:
            connection.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Unable to commit index {self._index_path}: {e}") from e

    def count(self) -> int:
        connection = self._require_connection()
        try:
            row = connection.execute('SELECT COUNT(*) FROM files').fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Unable to count records in index {self._index_path}: {e}") from e
        return row[0]

    def group_duplicates(self) -> list[DuplicateGroup]:
        """Return every digest shared by more than one record with its members.

        Groups follow SQLite's grouping order, members follow insertion order. Rows that
        cannot be decoded are logged and left out.

        Raises:
            StorageError: A query could not be executed
        """
        connection = self._require_connection()
        try:
            digests = connection.execute(
                'SELECT digest FROM files GROUP BY digest HAVING COUNT(*) > 1').fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Unable to query duplicates in index {self._index_path}: {e}") from e

        groups = []
        for (digest,) in digests:
            if not isinstance(digest, str):
                logger.warning(f"Skipping duplicate digest with unexpected value: {digest!r}")
                continue

            try:
                rows = connection.execute(
                    'SELECT path, size FROM files WHERE digest = ? ORDER BY id', (digest,)).fetchall()
            except sqlite3.Error as e:
                logger.warning(f"Unable to read files with digest {digest}: {e}")
                continue

            members = []
            for path, size in rows:
                record = self._decode_row(path, size, digest)
                if record is not None:
                    members.append(record)

            groups.append(DuplicateGroup(digest, members))

        return groups

    def list_records(self) -> Iterator[FileRecord]:
        """Yield every record in insertion order, skipping rows that cannot be decoded.

        Raises:
            StorageError: The query could not be executed
        """
        connection = self._require_connection()
        try:
            cursor = connection.execute('SELECT path, size, digest FROM files ORDER BY id')
        except sqlite3.Error as e:
            raise StorageError(f"Unable to list records in index {self._index_path}: {e}") from e

        try:
            for path, size, digest in cursor:
                record = self._decode_row(path, size, digest)
                if record is not None:
                    yield record
        finally:
            cursor.close()

    @staticmethod
    def _decode_row(path, size, digest) -> FileRecord | None:
        if not isinstance(path, str):
            logger.warning(f"Skipping record with unreadable path: {path!r}")
            return None
        if not isinstance(size, int):
            logger.warning(f"Skipping record {path} with unreadable size: {size!r}")
            return None
        if not isinstance(digest, str):
            logger.warning(f"Skipping record {path} with unreadable digest: {digest!r}")
            return None
        return FileRecord(path, size, digest)

    def close(self):
        """Close the connection. Safe to call more than once."""
        connection = getattr(self, '_connection', None)
        if connection is not None:
            if connection.in_transaction:
                logger.warning(f"Closing index {self._index_path} with uncommitted records")
            connection.close()
            self._connection = None

    def remove(self):
        """Close the index and delete its file.

        Raises:
            StorageError: The file could not be deleted
        """
        self.close()
        try:
            self._index_path.unlink()
        except OSError as e:
            raise StorageError(f"Unable to delete index {self._index_path}: {e}") from e
        logger.info(f"Deleted index {self._index_path}")
