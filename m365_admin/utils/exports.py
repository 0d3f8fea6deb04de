"""Tabular export helpers for command-line reports."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd
from loguru import logger

EXPORT_FORMATS = ("csv", "json")


def records_to_frame(rows: Iterable[Mapping[str, Any]], columns: Sequence[str] | None = None) -> pd.DataFrame:
    frame = pd.DataFrame(list(rows))
    if columns:
        frame = frame.reindex(columns=list(columns))
    return frame


def format_table(rows: Iterable[Mapping[str, Any]], columns: Sequence[str] | None = None, *, max_col_width: int = 60) -> str:
    """Render rows as a plain-text table for console output."""
    frame = records_to_frame(rows, columns)
    if frame.empty:
        return "(no rows)"
    frame = frame.fillna("")
    for column in frame.columns:
        frame[column] = frame[column].astype(str).str.slice(0, max_col_width)
    return frame.to_string(index=False)


def infer_format(path: Path, explicit: str | None = None) -> str:
    fmt = (explicit or path.suffix.lstrip(".")).lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{fmt}'; use one of: {', '.join(EXPORT_FORMATS)}")
    return fmt


def export_records(
    rows: Iterable[Mapping[str, Any]],
    path: Path,
    *,
    export_format: str | None = None,
    columns: Sequence[str] | None = None,
) -> Path:
    """Write rows to ``path`` as CSV (UTF-8 with BOM, Excel friendly) or JSON."""
    fmt = infer_format(path, export_format)
    frame = records_to_frame(rows, columns)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "csv":
        frame.to_csv(path, index=False, encoding="utf-8-sig")
    else:
        frame.to_json(path, orient="records", indent=2, date_format="iso", force_ascii=False)
    logger.info("Exported {} rows to {}", len(frame), path)
    return path
