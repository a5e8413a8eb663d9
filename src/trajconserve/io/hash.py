import hashlib
from pathlib import Path

from beartype import beartype

__all__ = ["hash_file"]


@beartype
def hash_file(
    file_path: str | Path,
    chunk_size: int = 8192,
) -> str:
    """
    Return the SHA-256 hex digest of a file, read in chunks.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> path = tmp / "empty.txt"
        >>> _ = path.write_bytes(b"")
        >>> hash_file(path)[:12]
        'e3b0c44298fc'
    """
    sha256_hash = hashlib.sha256()
    with Path(file_path).open("rb") as f:
        for block in iter(lambda: f.read(chunk_size), b""):
            sha256_hash.update(block)
    return sha256_hash.hexdigest()
