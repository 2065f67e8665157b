"""Console rendering of duplicate groups."""

import logging
import os
import sys
from pathlib import PurePath
from typing import Iterable, TextIO

from ..index.store import DuplicateGroup

logger = logging.getLogger(__name__)


def format_size(size_bytes: int) -> str:
    """Format byte size in human-readable format with decimal units.

    Uses powers of 1000 like most file managers do, not powers of 1024.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.50 KB", "999 bytes")
    """
    if size_bytes >= 1_000_000_000:
        return f"{size_bytes / 1_000_000_000:.2f} GB"
    elif size_bytes >= 1_000_000:
        return f"{size_bytes / 1_000_000:.2f} MB"
    elif size_bytes >= 1_000:
        return f"{size_bytes / 1_000:.2f} KB"
    else:
        return f"{size_bytes} bytes"


def display_name(path: str | os.PathLike) -> str:
    """Last segment of path, or the whole path when it has none."""
    name = PurePath(path).name
    if not name or name == '..':
        logger.warning(f"Unable to extract a file name from path: {path}")
        return str(path)
    return name


def print_duplicates(groups: Iterable[DuplicateGroup], root: str | os.PathLike, output: TextIO | None = None) -> int:
    """Print each duplicate group followed by its member files.

    Args:
        groups: Duplicate groups to print
        root: Scanned directory, named in the message when there are no duplicates
        output: Stream to print to, defaults to sys.stdout

    Returns:
        Number of groups printed
    """
    if output is None:
        output = sys.stdout

    count = 0
    for group in groups:
        if count == 0:
            print("\nDuplicate files found", file=output)
        count += 1

        print(f"\n### DUPLICATE ### digest {group.digest} is shared by {len(group.members)} files:", file=output)
        for record in group.members:
            print(f"~~~ {display_name(record.path)} ~~~ Size: {format_size(record.size)} ~~~ {record.path}",
                  file=output)

    if count == 0:
        print(f"No duplicate files found in {root} (including subdirectories)", file=output)
    else:
        print(file=output)

    return count
