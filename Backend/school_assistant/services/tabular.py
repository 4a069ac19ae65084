"""
CSV helpers for sheet content. Everything is read as strings; the school
sheets mix NISN numbers, class names and dates that must not be coerced.
"""
from __future__ import annotations

import io
from typing import Any, Optional

import polars as pl


def trimmed_headers(columns: list[str]) -> list[str]:
    """
    Strip each header. A name that is already taken gets ``_1``, ``_2``, ...
    appended, so ``["Nama ", "Nama"]`` becomes ``["Nama", "Nama_1"]``.
    """
    taken: set[str] = set()
    headers = []
    for column in columns:
        base = name = column.strip()
        suffix = 0
        while name in taken:
            suffix += 1
            name = f"{base}_{suffix}"
        taken.add(name)
        headers.append(name)
    return headers


def read_table(csv_text: str) -> pl.DataFrame:
    """Parse CSV text with trimmed headers and blank lines dropped."""
    if not csv_text or not csv_text.strip():
        return pl.DataFrame()

    df = pl.read_csv(
        io.BytesIO(csv_text.lstrip("\ufeff").encode("utf-8")),
        infer_schema=False,
        truncate_ragged_lines=True,
    )

    df.columns = trimmed_headers(df.columns)

    if df.width and df.height:
        df = df.filter(~pl.all_horizontal(pl.all().is_null()))
    return df


def write_table(df: pl.DataFrame) -> str:
    return df.write_csv()


def sample_rows(df: pl.DataFrame, n: int, seed: Optional[int] = None) -> list[dict[str, Any]]:
    if n <= 0 or df.height == 0:
        return []
    return df.sample(n=min(n, df.height), seed=seed).to_dicts()
