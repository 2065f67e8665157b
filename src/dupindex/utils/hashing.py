import hashlib
import io
import logging
import os
from pathlib import Path
from typing import Callable, NamedTuple, Protocol

import mmh3

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_CAP = 1_000_000
DEFAULT_HASH_ALGORITHM = 'md5'


class Hasher(Protocol):
    def update(self, data: bytes) -> None: ...

    def digest(self) -> bytes: ...


class Fingerprint(NamedTuple):
    """Content fingerprint of a file.

    Attributes:
        size: File size in bytes, taken from the open file descriptor
        digest: 128-bit content digest as lowercase hex
    """
    size: int
    digest: str


# name -> (digest_size, hasher factory)
HASH_ALGORITHMS: dict[str, tuple[int, Callable[[], Hasher]]] = {
    'md5': (16, hashlib.md5),
    'murmur3': (16, mmh3.mmh3_x64_128),
}


def get_hash_algorithm(name: str) -> tuple[int, Callable[[], Hasher]]:
    """Look up a hash algorithm by name.

    Raises:
        ValueError: Unknown hash algorithm
    """
    try:
        return HASH_ALGORITHMS[name]
    except KeyError:
        raise ValueError(f"Unknown hash algorithm: {name}") from None


def fingerprint(path: str | os.PathLike, hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
                chunk_cap: int = DEFAULT_CHUNK_CAP) -> Fingerprint:
    """Stream a file through the hash function and return its fingerprint.

    The file is read in chunks of min(size, chunk_cap) bytes so memory use stays
    bounded regardless of file size. The digest is only produced after every byte
    has been consumed; a failure at any point raises instead of returning a
    partial result.

    Args:
        path: File to fingerprint
        hash_algorithm: Name of an entry in HASH_ALGORITHMS
        chunk_cap: Upper bound for a single read

    Returns:
        Fingerprint of the file

    Raises:
        PermissionError: The file cannot be opened or read due to permissions
        OSError: Open, metadata or read failure
        ValueError: Unknown hash algorithm or non-positive chunk_cap
    """
    if chunk_cap < 1:
        raise ValueError(f"chunk_cap must be positive, got {chunk_cap}")

    _, hasher_factory = get_hash_algorithm(hash_algorithm)
    path = Path(path)

    logger.debug(f"Starting hash computation for: {path}")
    with open(path, 'rb', buffering=0) as raw:
        size = os.fstat(raw.fileno()).st_size
        chunk_size = max(min(size, chunk_cap), 1)
        hasher = hasher_factory()
        reader = io.BufferedReader(raw, buffer_size=chunk_size)
        while True:
            chunk = reader.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)

    result = Fingerprint(size, hasher.digest().hex())
    logger.debug(f"Completed hash computation for: {path} ({result.digest})")
    return result
