"""
Filter Executor — applies a retrieval plan to the cached sheets.

Plans come from the LLM and are untrusted: unknown sources are skipped and
filters on missing columns match nothing. Sources without filters pass
through byte-for-byte.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import polars as pl

from school_assistant.services.retrieval import RetrievalPlan, RowFilter
from school_assistant.services.tabular import read_table, write_table

logger = logging.getLogger(__name__)

# Position of a row in its sheet, carried through filtering so that
# overlapping plan entries merge without collapsing duplicate rows.
ROW_INDEX = "__sheet_row"


@dataclass(frozen=True)
class SheetLink:
    sheet_name: str
    column_name: str


# ─── Relationship Parsing ────────────────────────────────────────────────────

def parse_sheet_relationships(relationships: Optional[str]) -> list[list[SheetLink]]:
    """
    Parse ``"SISWA.NISN=PRESENSI SHALAT.NISN, SISWA.Nama=PELANGGARAN.NAMA"``.

    Each comma-separated group is a set of ``SHEET.Column`` links joined by
    ``=``. Sheet names are upper-cased; everything after the first dot is the
    column name. Groups with fewer than two valid links are dropped.
    """
    if not relationships:
        return []

    groups: list[list[SheetLink]] = []
    for group in relationships.split(","):
        links = []
        for part in group.strip().split("="):
            sheet, dot, column = part.strip().partition(".")
            if not dot or not sheet.strip() or not column.strip():
                continue
            links.append(SheetLink(sheet_name=sheet.strip().upper(), column_name=column.strip()))
        if len(links) > 1:
            groups.append(links)
        elif group.strip():
            logger.warning(f"Ignoring malformed sheet relationship group: {group.strip()!r}")
    return groups


# ─── Filtering ───────────────────────────────────────────────────────────────

def _resolve_source(name: str, data: Mapping[str, str]) -> Optional[str]:
    if name in data:
        return name
    wanted = name.strip().upper()
    for key in data:
        if key.upper() == wanted:
            return key
    return None


def apply_filters(df: pl.DataFrame, filters: tuple[RowFilter, ...]) -> pl.DataFrame:
    """AND of case-insensitive substring matches. Absent columns match no rows."""
    for row_filter in filters:
        if row_filter.column not in df.columns or row_filter.column == ROW_INDEX:
            return df.clear()
        needle = row_filter.value.lower()
        df = df.filter(
            pl.col(row_filter.column)
            .fill_null("")
            .str.to_lowercase()
            .str.contains(needle, literal=True)
        )
    return df


def _merge(existing: Optional[pl.DataFrame], new: pl.DataFrame) -> pl.DataFrame:
    if existing is None:
        return new
    merged = pl.concat([existing, new]).unique(subset=ROW_INDEX, keep="first", maintain_order=True)
    return merged.sort(ROW_INDEX)


def execute_plan(
    plan: RetrievalPlan,
    data: Mapping[str, str],
    relationships: Optional[list[list[SheetLink]]] = None,
) -> dict[str, str]:
    """
    Reduce the cached sheets to what the plan asks for.
    Returns {source name: CSV text}; sources that filter to nothing are omitted.
    """
    full: dict[str, str] = {}
    filtered: dict[str, pl.DataFrame] = {}
    parsed: dict[str, pl.DataFrame] = {}

    def frame(name: str) -> pl.DataFrame:
        if name not in parsed:
            parsed[name] = read_table(data[name]).with_row_index(ROW_INDEX)
        return parsed[name]

    for entry in plan.entries:
        name = _resolve_source(entry.source_name, data)
        if name is None:
            logger.info(f"Plan references unknown source {entry.source_name!r}; skipping.")
            continue

        if not entry.filters:
            full[name] = data[name]
            continue
        if name in full:
            continue

        rows = apply_filters(frame(name), entry.filters)
        filtered[name] = _merge(filtered.get(name), rows)

    for name in full:
        filtered.pop(name, None)

    if relationships:
        _expand_related(filtered, full, data, relationships, frame)

    subset = dict(full)
    for name, df in filtered.items():
        if df.height > 0:
            subset[name] = write_table(df.drop(ROW_INDEX))

    logger.info(f"Filter result: {', '.join(subset) or 'no matching data'}")
    return subset


def _expand_related(filtered, full, data, relationships, frame) -> None:
    """
    Pull in rows of linked sheets whose key matches a filtered sheet's rows.
    Sheets already in the subset are left as they are.
    """
    seeds = {name: df for name, df in filtered.items() if df.height > 0}
    for group in relationships:
        for primary in group:
            primary_name = _resolve_source(primary.sheet_name, seeds)
            if primary_name is None:
                continue
            primary_df = seeds[primary_name]
            if primary.column_name not in primary_df.columns:
                continue
            keys = set(primary_df.get_column(primary.column_name).drop_nulls().to_list()) - {""}
            if not keys:
                continue

            for related in group:
                if related is primary:
                    continue
                related_name = _resolve_source(related.sheet_name, data)
                if related_name is None or related_name in full or related_name in filtered:
                    continue
                related_df = frame(related_name)
                if related.column_name not in related_df.columns:
                    continue
                rows = related_df.filter(pl.col(related.column_name).is_in(list(keys)))
                if rows.height > 0:
                    filtered[related_name] = rows
                    logger.info(f"Linked {rows.height} row(s) from {related_name} via {related.column_name}.")
