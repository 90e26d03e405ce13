"""
Atomic result writers.

Tables and summaries are written to a temporary file in the destination
directory and moved into place with ``os.replace()``, so an interrupted
run never leaves a truncated results.csv or summary.json behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Callable, TextIO

import numpy as np
import pandas as pd


def _json_default(obj: Any) -> Any:
    """Serialize numpy scalars/arrays and paths found in summaries."""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return None if np.isnan(obj) else float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, os.PathLike):
        return os.fspath(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _atomic_write(path: str | os.PathLike, write: Callable[[TextIO], None]) -> None:
    path = os.fspath(path)
    dir_path = os.path.dirname(path) or "."
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=dir_path, suffix=".tmp", delete=False, newline=""
        ) as tmp:
            tmp_path = tmp.name
            write(tmp)
        os.replace(tmp_path, path)
    except BaseException:
        # Remove the partial temp file, then re-raise
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically; numpy values are converted."""
    _atomic_write(path, lambda f: json.dump(data, f, indent=indent, default=_json_default))


def atomic_write_csv(path: str | os.PathLike, df: pd.DataFrame, *, index: bool = False) -> None:
    """Write a DataFrame as CSV atomically."""
    _atomic_write(path, lambda f: df.to_csv(f, index=index))
