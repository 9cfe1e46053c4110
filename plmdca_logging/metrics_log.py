"""Lightweight metrics logging using Polars."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import polars as pl

LOG_DIR = Path("logs")


def log_records(name: str, records: List[Dict[str, Any]]) -> Path:
    """Append records to a CSV file under LOG_DIR.

    Args:
        name: Base filename without extension.
        records: List of dict rows.
    Returns:
        Path to the written CSV file.
    """
    assert isinstance(name, str) and len(name) > 0, "Invalid log name"
    assert isinstance(records, list), "records must be a list"
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    out = LOG_DIR / f"{name}.csv"
    if not records:
        return out
    df = pl.DataFrame(records, infer_schema_length=None)
    if out.exists():
        # read, vstack, and overwrite; columns missing on either side become null
        prev = pl.read_csv(out, infer_schema_length=None)
        df = pl.concat([prev, df], how="diagonal_relaxed")
    df.write_csv(out)
    return out


def log_record(name: str, record: Dict[str, Any]) -> Path:
    """Append a single record to a CSV file."""
    return log_records(name, [record])


def read_records(name: str) -> pl.DataFrame:
    """Load a CSV previously written by ``log_records``."""
    return pl.read_csv(LOG_DIR / f"{name}.csv", infer_schema_length=None)
