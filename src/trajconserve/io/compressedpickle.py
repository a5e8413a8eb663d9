"""
Zstandard-compressed dill pickles for tensor bundles and fitted models.
"""

import os
from os import PathLike
from pathlib import Path

import dill as pickle
from beartype import beartype
from beartype.typing import Any
from zstandard import (
    ZstdCompressionParameters,
    ZstdCompressor,
    ZstdDecompressor,
)

from trajconserve.io.hash import hash_file
from trajconserve.logging import configure_logging

__all__ = ["CompressedPickle"]

logger = configure_logging(__name__)


@beartype
def compression_thread_count(cpu_count: int | None = None) -> int:
    """
    Leave one or two cores free on larger machines.

    Examples:
        >>> compression_thread_count(2), compression_thread_count(8)
        (2, 7)
        >>> compression_thread_count(32)
        30
    """
    cpu_count = cpu_count or os.cpu_count() or 1
    if cpu_count <= 2:
        return cpu_count
    if cpu_count <= 8:
        return cpu_count - 1
    return cpu_count - 2


class CompressedPickle:
    """
    Read and write zstandard-compressed pickle files.

    Examples:
        >>> import numpy as np
        >>> tmp = getfixture("tmp_path")
        >>> path = tmp / "gene1_model.pkl.zst"
        >>> _ = CompressedPickle.save(path, {"values": np.arange(3)})
        >>> CompressedPickle.load(path)["values"].tolist()
        [0, 1, 2]
    """

    @staticmethod
    def save(
        file_path: PathLike | str,
        obj: Any,
        compression_level: int = 3,
    ) -> Path:
        """
        Save `obj` to `file_path`, creating parent directories as needed.

        Args:
            file_path (PathLike | str): Destination, conventionally ending in
                `.pkl.zst`.
            obj (Any): Object to serialize with dill.
            compression_level (int, optional): Zstandard level. Default is 3.

        Returns:
            Path: The written file.
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        compression_params = ZstdCompressionParameters(
            compression_level=compression_level,
            threads=compression_thread_count(),
        )
        with file_path.open("wb") as f:
            compressor = ZstdCompressor(compression_params=compression_params)
            with compressor.stream_writer(f) as writer:
                pickle.dump(obj, writer)

        _log_hash(file_path, mode="saved")
        return file_path

    @staticmethod
    def load(file_path: PathLike | str) -> Any:
        """Load an object written by `CompressedPickle.save`."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"No such file: {file_path}")
        with file_path.open("rb") as f:
            with ZstdDecompressor().stream_reader(f) as reader:
                obj = pickle.load(reader)

        _log_hash(file_path, mode="loaded")
        return obj


@beartype
def _log_hash(file_path: str | Path, mode: str) -> str:
    file_hash = hash_file(file_path=file_path)
    logger.info(
        f"\nSuccessfully {mode} file: {file_path}\n"
        f"SHA-256 hash: {file_hash}\n"
    )
    return file_hash
