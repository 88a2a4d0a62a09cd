"""Drift file: the kernel frequency (ppm * 2^16) persisted as one integer."""

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


def read_drift(path: Union[str, Path]) -> Optional[int]:
    """
    Read the stored frequency.

    Returns:
        The frequency, or None if the file does not exist

    Raises:
        ValueError: the file does not hold a single integer
    """
    path = Path(path)
    if not path.exists():
        return None
    text = path.read_text().strip()
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"{path}: invalid drift value {text!r}") from None


def write_drift(path: Union[str, Path], freq: int) -> None:
    """Rewrite the drift file with freq."""
    path = Path(path)
    tmp = path.with_name(path.name + '.tmp')
    tmp.write_text(f"{int(freq)}\n")
    tmp.replace(path)
    logger.debug(f"Wrote frequency {int(freq)} to {path}")
