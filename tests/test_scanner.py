import csv
import io
import os
import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from dupindex import (
    ExportError,
    ScanOptions,
    Scanner,
    ScanTargetNotADirectory,
    ScanTargetNotFound,
    StorageError,
)
from dupindex.index.store import IndexStore
from dupindex.utils import hashing

from .test_utils import make_tree, md5_hex

TIMESTAMP = 1700000000000


class ScannerTest(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        base = Path(self._tmpdir.name)
        self.target = base / 'target'
        self.target.mkdir()
        self.index_directory = base / 'indexes'
        self.index_directory.mkdir()
        self.index_path = self.index_directory / f'{TIMESTAMP}.sqlite'
        self.export_path = self.index_directory / f'{TIMESTAMP}.csv'

    def tearDown(self):
        self._tmpdir.cleanup()

    def _scan(self, target: Path | None = None, **options):
        output = io.StringIO()
        scanner = Scanner(self.target if target is None else target,
                          ScanOptions(index_directory=self.index_directory, **options))
        summary = scanner.run(output, timestamp_ms=TIMESTAMP)
        return summary, output.getvalue()

    def _read_index(self) -> list[tuple[int, str, int, str]]:
        connection = sqlite3.connect(self.index_path)
        try:
            return connection.execute('SELECT id, path, size, digest FROM files ORDER BY id').fetchall()
        finally:
            connection.close()

    def test_hello_world(self):
        """Test that files with equal content are grouped and others left out."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'world'})

        summary, output = self._scan()

        self.assertEqual(3, summary.indexed)
        self.assertEqual(0, summary.failed)
        self.assertEqual(1, len(summary.groups))
        group = summary.groups[0]
        self.assertEqual(md5_hex(b'hello'), group.digest)
        self.assertCountEqual([str(self.target / 'A'), str(self.target / 'B')],
                              [record.path for record in group.members])
        self.assertNotIn(str(self.target / 'C'), output)
        self.assertIn(f'~~~ A ~~~ Size: 5 bytes ~~~ {self.target / "A"}', output)
        self.assertIn(f'~~~ B ~~~ Size: 5 bytes ~~~ {self.target / "B"}', output)

    def test_index_torn_down_by_default(self):
        """Test that the index is deleted when it is not kept."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello'})

        summary, output = self._scan()

        self.assertIsNone(summary.index_path)
        self.assertIsNone(summary.export_path)
        self.assertEqual([], list(self.index_directory.iterdir()))
        self.assertNotIn('Results available', output)

    def test_empty_directory(self):
        """Test scanning a directory without files."""
        summary, output = self._scan(keep_index=True)

        self.assertEqual(0, summary.indexed)
        self.assertEqual([], summary.groups)
        self.assertEqual(
            f'No duplicate files found in {self.target} (including subdirectories)\n'
            f'Results available at {self.index_path}\n',
            output)
        self.assertEqual([], self._read_index())

    def test_distinct_content(self):
        """Test that distinct content yields no groups."""
        make_tree(self.target, {'a': b'1', 'b': b'2', 'sub/c': b'3', 'sub/d': b''})

        summary, output = self._scan()

        self.assertEqual(4, summary.indexed)
        self.assertEqual([], summary.groups)
        self.assertIn('No duplicate files found', output)

    def test_group_membership_is_exact(self):
        """Test that a group holds every file with its content across subdirectories."""
        make_tree(self.target, {
            'one': b'shared',
            'x/two': b'shared',
            'x/y/three': b'shared',
            'x/y/four': b'shared',
            'other1': b'unique 1',
            'x/other2': b'unique 2',
        })

        summary, _ = self._scan()

        self.assertEqual(1, len(summary.groups))
        self.assertEqual(4, len(summary.groups[0].members))

    def test_empty_files_are_duplicates(self):
        """Test that empty files are duplicates of each other."""
        make_tree(self.target, {'empty1': b'', 'sub/empty2': b'', 'full': b'x'})

        summary, _ = self._scan()

        self.assertEqual(1, len(summary.groups))
        self.assertEqual('d41d8cd98f00b204e9800998ecf8427e', summary.groups[0].digest)
        self.assertEqual([0, 0], [record.size for record in summary.groups[0].members])

    def test_keep_index(self):
        """Test the rows of a kept index."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'world'})

        summary, output = self._scan(keep_index=True)

        self.assertEqual(self.index_path, summary.index_path)
        self.assertIn(f'Results available at {self.index_path}', output)
        rows = self._read_index()
        self.assertEqual(3, len(rows))
        self.assertEqual([1, 2, 3], [row[0] for row in rows])
        self.assertEqual(
            {(str(self.target / 'A'), 5, md5_hex(b'hello')),
             (str(self.target / 'B'), 5, md5_hex(b'hello')),
             (str(self.target / 'C'), 5, md5_hex(b'world'))},
            {row[1:] for row in rows})

    def test_export_csv(self):
        """Test the CSV export of a scan."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'world'})

        summary, output = self._scan(export_csv=True)

        self.assertEqual(self.export_path, summary.export_path)
        self.assertIn(f'Results available at {self.export_path}', output)
        self.assertFalse(self.index_path.exists())
        with open(self.export_path, encoding='utf-8', newline='') as f:
            rows = list(csv.reader(f))
        self.assertEqual(['name', 'path', 'size', 'size_human', 'digest'], rows[0])
        self.assertEqual(['A', 'B', 'C'], sorted(row[0] for row in rows[1:]))

    def test_murmur3(self):
        """Test scanning with the murmur3 hash algorithm."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'world'})

        summary, _ = self._scan(hash_algorithm='murmur3')

        self.assertEqual(1, len(summary.groups))
        self.assertNotEqual(md5_hex(b'hello'), summary.groups[0].digest)
        self.assertEqual(32, len(summary.groups[0].digest))

    def test_small_chunk_cap(self):
        """Test that the chunk cap does not change digests."""
        make_tree(self.target, {'A': b'x' * 1001, 'B': b'x' * 1001})

        summary, _ = self._scan(chunk_cap=10)

        self.assertEqual(md5_hex(b'x' * 1001), summary.groups[0].digest)

    def test_unknown_hash_algorithm(self):
        """Test that an unknown hash algorithm is rejected up front."""
        with self.assertRaises(ValueError):
            Scanner(self.target, ScanOptions(index_directory=self.index_directory, hash_algorithm='crc'))

    def test_missing_target(self):
        """Test that a missing target leaves no artifacts."""
        with self.assertRaises(ScanTargetNotFound):
            self._scan(target=self.target / 'missing')

        self.assertEqual([], list(self.index_directory.iterdir()))

    def test_target_is_a_file(self):
        """Test that a file target leaves no artifacts."""
        file_path = self.target / 'file.txt'
        file_path.write_bytes(b'content')

        with self.assertRaises(ScanTargetNotADirectory):
            self._scan(target=file_path, keep_index=True)

        self.assertEqual([], list(self.index_directory.iterdir()))

    def test_index_creation_failure(self):
        """Test that an index that cannot be created is fatal."""
        make_tree(self.target, {'A': b'hello'})
        self.index_directory.rmdir()

        with self.assertRaises(StorageError):
            self._scan()

    def test_unreadable_file_excluded(self):
        """Test that a file that cannot be read is left out of the index and the report."""
        files = make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'hello', 'D': b'world'})
        real_fingerprint = hashing.fingerprint

        def fingerprint(path, *args, **kwargs):
            if Path(path) == files['C']:
                raise PermissionError(13, 'Permission denied', str(path))
            return real_fingerprint(path, *args, **kwargs)

        with mock.patch('dupindex.scanner.fingerprint', side_effect=fingerprint):
            with self.assertLogs('dupindex.scanner', level='WARNING') as logs:
                summary, output = self._scan(keep_index=True)

        self.assertEqual(3, summary.indexed)
        self.assertEqual(1, summary.failed)
        self.assertIn(str(files['C']), logs.output[0])
        self.assertEqual(1, len(summary.groups))
        self.assertCountEqual([str(files['A']), str(files['B'])],
                              [record.path for record in summary.groups[0].members])
        self.assertNotIn(str(files['C']), output)
        self.assertNotIn(str(files['C']), [row[1] for row in self._read_index()])

    @unittest.skipIf(not hasattr(os, 'geteuid') or os.geteuid() == 0,
                     'permission bits are not enforced for root')
    def test_file_without_read_permission(self):
        """Test a file without read permission on a real filesystem."""
        files = make_tree(self.target, {'A': b'hello', 'B': b'hello', 'locked': b'hello'})
        files['locked'].chmod(0)
        try:
            with self.assertLogs('dupindex.scanner', level='WARNING'):
                summary, _ = self._scan()
        finally:
            files['locked'].chmod(0o644)

        self.assertEqual(2, summary.indexed)
        self.assertEqual(1, summary.failed)
        self.assertEqual(2, len(summary.groups[0].members))

    def test_insert_failure_continues(self):
        """Test that a failed insert is a warning and the scan continues."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello', 'C': b'hello'})
        real_insert = IndexStore.insert
        calls = []

        def insert(store, record):
            calls.append(record)
            if len(calls) == 1:
                raise StorageError(f"Unable to insert {record.path} into index: disk I/O error")
            return real_insert(store, record)

        with mock.patch.object(IndexStore, 'insert', autospec=True, side_effect=insert):
            with self.assertLogs('dupindex.scanner', level='WARNING'):
                summary, _ = self._scan()

        self.assertEqual(2, summary.indexed)
        self.assertEqual(1, summary.failed)
        self.assertEqual(2, len(summary.groups[0].members))

    def test_teardown_failure_is_a_warning(self):
        """Test that a failed index deletion is a warning."""
        make_tree(self.target, {'A': b'hello'})

        with mock.patch.object(IndexStore, 'remove', side_effect=StorageError('Unable to delete index')):
            with self.assertLogs('dupindex.scanner', level='WARNING') as logs:
                summary, _ = self._scan()

        self.assertEqual(1, summary.indexed)
        self.assertIn('Unable to delete index', logs.output[0])

    def test_export_failure_tears_down_index(self):
        """Test that a failed export deletes an index that was not kept."""
        make_tree(self.target, {'A': b'hello'})
        self.export_path.write_text('already here')

        with self.assertRaises(ExportError):
            self._scan(export_csv=True)

        self.assertFalse(self.index_path.exists())

    def test_export_failure_keeps_requested_index(self):
        """Test that a failed export keeps an index that was requested."""
        make_tree(self.target, {'A': b'hello'})
        self.export_path.write_text('already here')

        with self.assertRaises(ExportError):
            self._scan(export_csv=True, keep_index=True)

        self.assertEqual(1, len(self._read_index()))

    def test_undecodable_file_name(self):
        """Test that a file name that is not valid UTF-8 is indexed under a lossy path."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello'})
        try:
            with open(os.path.join(os.fsencode(self.target), b'bad\xff'), 'wb') as f:
                f.write(b'hello')
        except OSError:
            self.skipTest('filesystem rejects names that are not valid UTF-8')

        summary, output = self._scan(export_csv=True, keep_index=True)

        self.assertEqual(3, summary.indexed)
        self.assertEqual(0, summary.failed)
        self.assertEqual(1, len(summary.groups))
        bad_path = str(self.target / 'bad\ufffd')
        self.assertIn(bad_path, [record.path for record in summary.groups[0].members])
        self.assertIn(f'~~~ bad\ufffd ~~~ Size: 5 bytes ~~~ {bad_path}', output)
        self.assertIn(bad_path, [row[1] for row in self._read_index()])
        self.assertIn(bad_path, self.export_path.read_text(encoding='utf-8'))

    def test_undecodable_file_name_with_unique_content(self):
        """Test that a file name that is not valid UTF-8 does not stop the scan."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello'})
        try:
            with open(os.path.join(os.fsencode(self.target), b'bad\xff'), 'wb') as f:
                f.write(b'world')
        except OSError:
            self.skipTest('filesystem rejects names that are not valid UTF-8')

        summary, _ = self._scan()

        self.assertEqual(3, summary.indexed)
        self.assertEqual(1, len(summary.groups))
        self.assertCountEqual([str(self.target / 'A'), str(self.target / 'B')],
                              [record.path for record in summary.groups[0].members])

    def test_incomplete_export_is_not_announced(self):
        """Test that a CSV export that could not be flushed is a warning, not a failure."""
        make_tree(self.target, {'A': b'hello', 'B': b'hello'})

        with mock.patch('dupindex.scanner.export_csv', return_value=None):
            summary, output = self._scan(export_csv=True)

        self.assertIsNone(summary.export_path)
        self.assertEqual(1, len(summary.groups))
        self.assertNotIn('Results available', output)
        self.assertEqual([], list(self.index_directory.iterdir()))
