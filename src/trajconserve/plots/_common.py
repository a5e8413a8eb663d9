from os import PathLike
from pathlib import Path

import matplotlib.pyplot as plt
from beartype import beartype
from beartype.typing import Union
from matplotlib.figure import Figure

from trajconserve.logging import configure_logging

__all__ = ["save_figure"]

logger = configure_logging(__name__)


@beartype
def save_figure(fig: Figure, file_path: Union[str, PathLike]) -> Path:
    """
    Save `fig` to `file_path` and close it.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> fig, ax = plt.subplots()
        >>> save_figure(fig, tmp / "empty.pdf").name
        'empty.pdf'
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fig.savefig(
            file_path,
            facecolor=fig.get_facecolor(),
            bbox_inches="tight",
            edgecolor="none",
            dpi=300,
        )
    finally:
        plt.close(fig)
    logger.info(f"Saved figure to {file_path}")
    return file_path
