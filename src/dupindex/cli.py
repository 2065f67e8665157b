import argparse
import logging
import sys
import textwrap
from pathlib import Path

from . import Scanner, ScanOptions, ScanTargetError, StorageError, ExportError, IndexSettings, SettingsError
from .index.path import default_index_directory
from .index.settings import (
    SETTING_CHUNK_SIZE,
    SETTING_FOLLOW_SYMLINKS,
    SETTING_HASH_ALGORITHM,
    SETTING_INDEX_DIRECTORY,
    SETTING_LOG_LEVEL,
    SETTING_LOG_PATH,
)
from .utils.hashing import DEFAULT_CHUNK_CAP, DEFAULT_HASH_ALGORITHM, HASH_ALGORITHMS
from .utils.profiling import profile_main

logger = logging.getLogger(__name__)

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dupindex',
        description='Find duplicate files in a directory tree by fingerprinting every file by content and '
                    'grouping files that share a digest.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              dupindex -d /home/user/photos
              dupindex -d /home/user/photos --sqlite --csv

            With --sqlite the index is kept as <timestamp>.sqlite; with --csv every
            indexed file is exported to <timestamp>.csv next to it.
            ''').strip()
    )
    parser.add_argument(
        '-d', '--directory',
        metavar='PATH',
        required=True,
        type=Path,
        help='Directory to search for duplicate files, including subdirectories')
    parser.add_argument(
        '-s', '--sqlite',
        action='store_true',
        help='Keep the SQLite index with the scan results')
    parser.add_argument(
        '-c', '--csv',
        action='store_true',
        help='Export every indexed file to a CSV file next to the index')
    parser.add_argument(
        '--index-dir',
        metavar='PATH',
        type=Path,
        help='Directory to create the index in. If not provided, uses index.directory from the settings or the '
             'directory of the program.')
    parser.add_argument(
        '--hash',
        choices=sorted(HASH_ALGORITHMS),
        help=f'Hash algorithm used to fingerprint files (default: index.hash_algorithm from the settings or '
             f'{DEFAULT_HASH_ALGORITHM})')
    parser.add_argument(
        '--follow-symlinks',
        action='store_true',
        default=None,
        help='Follow symlinks to files and directories (default: walk.follow_symlinks from the settings or '
             'symlinks are skipped)')
    parser.add_argument(
        '--config',
        metavar='PATH',
        help='Path to a TOML settings file. If not provided, uses the DUPINDEX_CONFIG environment variable.')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output for detailed information during operations')
    parser.add_argument(
        '--log-file',
        metavar='PATH',
        help='Path to log file for operation logging. If not provided, uses logging.path from the settings or no '
             'logging.')
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=LOG_LEVELS,
        help='Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to logging.level from the settings '
             'or INFO when a log file is used.')
    return parser


def configure_logging(verbose: bool, log_file: str | None, log_level: str | None):
    """Send warnings to stderr and, when a log file is given, everything at log_level to it."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root.addHandler(console)
    level = console.level

    if log_file:
        file_level = getattr(logging, log_level or 'INFO')
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root.addHandler(file_handler)
        level = min(level, file_level)

    root.setLevel(level)


def _fail(message: str) -> int:
    print(f"ERROR: {message}", file=sys.stderr)
    return 1


def run(argv: list[str] | None = None) -> int:
    """Parse arguments, run a scan and return the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        settings = IndexSettings.from_environment(args.config)
        log_file = args.log_file or settings.get_typed(SETTING_LOG_PATH, str)
        log_level = args.log_level or settings.get_typed(SETTING_LOG_LEVEL, str)
        if log_level is not None and log_level not in LOG_LEVELS:
            raise SettingsError(f"Setting {SETTING_LOG_LEVEL} must be one of {', '.join(LOG_LEVELS)}")

        index_directory = args.index_dir
        if index_directory is None:
            configured_directory = settings.get_typed(SETTING_INDEX_DIRECTORY, str)
            index_directory = Path(configured_directory) if configured_directory else default_index_directory()

        hash_algorithm = args.hash or settings.get_typed(SETTING_HASH_ALGORITHM, str, DEFAULT_HASH_ALGORITHM)
        if hash_algorithm not in HASH_ALGORITHMS:
            raise SettingsError(f"Setting {SETTING_HASH_ALGORITHM} has unknown hash algorithm: {hash_algorithm}")

        chunk_cap = settings.get_typed(SETTING_CHUNK_SIZE, int, DEFAULT_CHUNK_CAP)
        if chunk_cap < 1:
            raise SettingsError(f"Setting {SETTING_CHUNK_SIZE} must be positive")

        follow_symlinks = args.follow_symlinks
        if follow_symlinks is None:
            follow_symlinks = settings.get_typed(SETTING_FOLLOW_SYMLINKS, bool, False)
    except SettingsError as e:
        return _fail(str(e))

    try:
        configure_logging(args.verbose, log_file, log_level)
    except OSError as e:
        return _fail(f"Unable to open log file {log_file}: {e}")

    scanner = Scanner(args.directory, ScanOptions(
        index_directory=index_directory,
        keep_index=args.sqlite,
        export_csv=args.csv,
        hash_algorithm=hash_algorithm,
        chunk_cap=chunk_cap,
        follow_symlinks=follow_symlinks,
    ))

    try:
        summary = scanner.run()
    except (ScanTargetError, StorageError, ExportError) as e:
        logger.debug("Scan aborted", exc_info=True)
        return _fail(str(e))

    if summary.failed:
        logger.info(f"{summary.failed} files could not be indexed")
    return 0


@profile_main
def dupindex_main():
    sys.exit(run())


if __name__ == '__main__':
    dupindex_main()
