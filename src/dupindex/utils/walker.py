import logging
import os
import stat
from pathlib import Path
from typing import Iterator, NamedTuple

logger = logging.getLogger(__name__)


class WalkPolicy(NamedTuple):
    """Policy controlling filesystem traversal behavior.

    Attributes:
        follow_symlinks: Yield symlinks to regular files and descend into symlinks to
                         directories. Directories are tracked by (st_dev, st_ino) so a
                         symlink cycle is entered at most once.
    """
    follow_symlinks: bool = False


def walk_files(path: str | os.PathLike, policy: WalkPolicy | None = None) -> Iterator[Path]:
    """Lazily yield the regular files below path.

    Directories are descended but never yielded; sockets, FIFOs and device nodes are
    skipped. Directories that cannot be enumerated are skipped and traversal carries
    on with their siblings.

    Args:
        path: Root directory to walk
        policy: WalkPolicy instance controlling walk behavior

    Yields:
        Path of every regular file, built by joining path with the relative path
    """
    if policy is None:
        policy = WalkPolicy()

    root = Path(path)
    visited: set[tuple[int, int]] = set()

    if policy.follow_symlinks:
        try:
            st = root.stat()
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {root}: {e}")
            return
        visited.add((st.st_dev, st.st_ino))

    # Depth-first over an explicit stack of (directory, remaining entries)
    pending = [(root, iter(_list_entries(root)))]
    while pending:
        directory, entries = pending[-1]
        entry = next(entries, None)
        if entry is None:
            pending.pop()
            continue

        child = directory / entry.name
        try:
            if entry.is_symlink() and not policy.follow_symlinks:
                continue
            st = entry.stat(follow_symlinks=policy.follow_symlinks)
        except OSError as e:
            # Broken symlink or entry removed since it was listed
            logger.debug(f"Skipping {child}: {e}")
            continue

        if stat.S_ISDIR(st.st_mode):
            if policy.follow_symlinks:
                key = (st.st_dev, st.st_ino)
                if key in visited:
                    logger.debug(f"Skipping already visited directory {child}")
                    continue
                visited.add(key)
            pending.append((child, iter(_list_entries(child))))
        elif stat.S_ISREG(st.st_mode):
            yield child


def _list_entries(directory: Path) -> list[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return list(it)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return []
