"""
Rate Resolution Engine - Tabular Source Adapter

This module materializes one PricingTable into a normalized source,
regardless of where its rows physically live:
1. remote_spreadsheet - every sheet of a (Google Sheets) workbook
2. uploaded_file - the first sheet of an uploaded xlsx/xls/csv file
3. builtin - the relational zone + price tier store, no parsing at all

Column headers are matched case-insensitively against an alias table, so
both the CEP_INICIO and cep_inicio conventions work. Multi-sheet workbooks
are classified once: a self-contained sheet wins, otherwise a coverage
sheet and a price sheet are paired into a JoinedSheetSource.
"""

import io
import logging
import re
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import numpy as np
import pandas as pd

from rate_engine.core.exceptions import SourceUnavailable
from rate_engine.schemas.models import PricingTable
from rate_engine.services.builtin_store import BuiltinRateStore
from rate_engine.services.fetcher import ContentFetcher, HttpContentFetcher, to_workbook_export_url
from rate_engine.services.sources import (
    COVERAGE_COLUMNS,
    DEFAULT_ZONE_LABEL,
    PRICE_COLUMNS,
    TIER_COLUMNS,
    JoinedSheetSource,
    NormalizedSource,
    SingleSheetSource,
    empty_frame,
)

logger = logging.getLogger('rate_engine.sheet_adapter')

# Canonical field -> accepted header spellings (compared lowercased, spaces as underscores)
COLUMN_ALIAS_MAP = {
    "postal_start": ["cep_inicio", "cep_inicial", "cep_de", "postal_start"],
    "postal_end": ["cep_fim", "cep_final", "cep_ate", "postal_end"],
    "weight_min": ["peso_min", "peso_minimo", "weight_min"],
    "weight_max": ["peso_max", "peso_maximo", "weight_max"],
    "price": ["preco", "valor", "price"],
    "lead_time_days": ["prazo", "prazo_dias", "lead_time_days"],
    "zone_label": ["zona", "regiao", "zone", "zone_label"],
    "express_price": ["preco_expresso", "express_price"],
    "express_lead_time_days": ["prazo_expresso", "express_lead_time_days"],
}

SINGLE_REQUIRED = ["postal_start", "postal_end", "weight_min", "weight_max", "price", "lead_time_days"]
PRICE_REQUIRED = ["weight_min", "weight_max", "price"]

POSTAL_FIELDS = ("postal_start", "postal_end")
NUMERIC_FIELDS = ("weight_min", "weight_max", "price", "express_price")
DAYS_FIELDS = ("lead_time_days", "express_lead_time_days")

# Open-ended bounds for sheets that carry only one of the weight columns
WEIGHT_DEFAULTS = {"weight_min": 0.0, "weight_max": 99999.0}


def _header_key(header) -> str:
    return re.sub(r"[\s\-]+", "_", str(header).strip().lower())


def resolve_columns(headers) -> Dict[str, str]:
    """
    Resolve sheet headers to canonical field names.

    Returns:
        Dict[str, str]: canonical field -> actual header, first match wins
    """
    resolved: Dict[str, str] = {}
    keys = [(_header_key(h), h) for h in headers]
    for canonical, aliases in COLUMN_ALIAS_MAP.items():
        for key, header in keys:
            if key in aliases:
                resolved[canonical] = header
                break
    return resolved


def _digits(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, (int, np.integer)):
        return str(value)
    if isinstance(value, (float, np.floating)):
        return str(int(value)) if float(value).is_integer() else re.sub(r"\D", "", str(value))
    text = str(value).strip()
    if re.fullmatch(r"\d+\.0+", text):
        text = text.split(".")[0]
    return re.sub(r"\D", "", text)


def _to_number(value) -> float:
    """Parse a cell into a float, accepting Brazilian formats like 'R$ 1.234,50'."""
    if value is None:
        return np.nan
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    text = str(value).strip().replace("R$", "").replace(" ", "")
    if not text:
        return np.nan
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return np.nan


def _to_days(value) -> float:
    """Parse lead times such as '5', '5 dias' or '5d'."""
    if isinstance(value, str):
        match = re.match(r"^\s*(\d+(?:[.,]\d+)?)\s*(d|dia|dias|days?)?\s*$", value, flags=re.IGNORECASE)
        return _to_number(match.group(1)) if match else np.nan
    return _to_number(value)


def normalize_sheet(df: pd.DataFrame, sheet_name: str) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Normalize one raw sheet into canonical tier columns.

    Blank rows are dropped; every other row is kept, with unparseable cells
    as NaN. row_index is the spreadsheet line number (header is line 1).

    Returns:
        Tuple of (normalized DataFrame, resolved column mapping)
    """
    columns = resolve_columns(df.columns)
    raw = df.replace(r"^\s*$", np.nan, regex=True).dropna(how="all")

    out = pd.DataFrame(index=raw.index)
    for canonical in COLUMN_ALIAS_MAP:
        header = columns.get(canonical)
        if header is None:
            out[canonical] = np.nan
            continue
        series = raw[header]
        if canonical in POSTAL_FIELDS:
            out[canonical] = series.map(_digits)
        elif canonical in NUMERIC_FIELDS:
            out[canonical] = series.map(_to_number).astype(float)
        elif canonical in DAYS_FIELDS:
            out[canonical] = series.map(_to_days).astype(float)
        else:
            out[canonical] = series.map(lambda v: None if pd.isna(v) else str(v).strip())

    if "weight_min" in columns or "weight_max" in columns:
        for canonical, default in WEIGHT_DEFAULTS.items():
            if canonical not in columns:
                out[canonical] = default

    out["sheet"] = sheet_name
    out["row_index"] = [int(i) + 2 for i in raw.index] if len(raw) else []
    return out.reset_index(drop=True)[TIER_COLUMNS], columns


def _missing(columns: Dict[str, str], required: List[str]) -> List[str]:
    return [field for field in required if field not in columns]


def _is_self_contained(columns: Dict[str, str]) -> bool:
    return (
        "postal_start" in columns and "postal_end" in columns and "price" in columns
        and ("weight_min" in columns or "weight_max" in columns)
    )


def _is_coverage(columns: Dict[str, str]) -> bool:
    return (
        "postal_start" in columns and "postal_end" in columns
        and ("zone_label" in columns or "lead_time_days" in columns)
        and "price" not in columns
    )


def _is_price(columns: Dict[str, str]) -> bool:
    return "price" in columns and ("weight_min" in columns or "weight_max" in columns)


def classify_sheets(sheets: Dict[str, pd.DataFrame]) -> NormalizedSource:
    """
    Classify a workbook's sheets into a single or joined source.

    Strategy 1: the first self-contained sheet (postal range + weight + price)
    in workbook order is used alone.
    Strategy 2: the first coverage sheet is paired with the first price sheet.
    """
    normalized: List[Tuple[str, pd.DataFrame, Dict[str, str]]] = []
    for name, df in sheets.items():
        frame, columns = normalize_sheet(df, name)
        if frame.empty:
            logger.debug(f"Sheet '{name}' has no data rows, skipping")
            continue
        normalized.append((name, frame, columns))

    if not normalized:
        logger.warning("No sheet with data rows found")
        return SingleSheetSource(missing_columns={name: list(SINGLE_REQUIRED) for name in sheets})

    self_contained = next(((n, f, c) for n, f, c in normalized if _is_self_contained(c)), None)
    if self_contained is not None:
        name, frame, columns = self_contained
        logger.info(f"Using self-contained sheet '{name}'")
        return SingleSheetSource(
            rows=frame,
            sheets=[name],
            missing_columns={name: _missing(columns, SINGLE_REQUIRED)},
            present_columns={name: list(columns)},
        )

    coverage = next(((n, f, c) for n, f, c in normalized if _is_coverage(c)), None)
    price = next(
        ((n, f, c) for n, f, c in normalized if _is_price(c) and (coverage is None or n != coverage[0])),
        None,
    )
    if coverage is not None and price is not None:
        cov_name, cov_frame, cov_cols = coverage
        price_name, price_frame, price_cols = price
        cov_frame = cov_frame.copy()
        price_frame = price_frame.copy()
        cov_frame["zone_label"] = cov_frame["zone_label"].fillna(DEFAULT_ZONE_LABEL)
        price_frame["zone_label"] = price_frame["zone_label"].fillna(DEFAULT_ZONE_LABEL)

        missing = {
            cov_name: _missing(cov_cols, ["postal_start", "postal_end"]),
            price_name: _missing(price_cols, PRICE_REQUIRED),
        }
        if "lead_time_days" not in cov_cols and "lead_time_days" not in price_cols:
            missing[cov_name].append("lead_time_days")

        logger.info(f"Joining coverage sheet '{cov_name}' with price sheet '{price_name}'")
        return JoinedSheetSource(
            coverage=cov_frame[COVERAGE_COLUMNS].reset_index(drop=True),
            prices=price_frame[PRICE_COLUMNS].reset_index(drop=True),
            coverage_sheet=cov_name,
            price_sheet=price_name,
            missing_columns=missing,
            present_columns={cov_name: list(cov_cols), price_name: list(price_cols)},
        )

    logger.warning(f"No usable sheet layout among {[n for n, _, _ in normalized]}")
    return SingleSheetSource(
        rows=empty_frame(TIER_COLUMNS),
        missing_columns={n: _missing(c, SINGLE_REQUIRED) for n, _, c in normalized},
        present_columns={n: list(c) for n, _, c in normalized},
    )


def _extension(location: str) -> str:
    path = urlparse(location).path if "://" in location else location
    return PurePosixPath(path.replace("\\", "/")).suffix.lower()


class SheetAdapter:
    """Loads any PricingTable into a NormalizedSource."""

    def __init__(
        self,
        fetcher: Optional[ContentFetcher] = None,
        builtin_store: Optional[BuiltinRateStore] = None,
    ):
        self.fetcher = fetcher or HttpContentFetcher()
        self.builtin_store = builtin_store

    def load(self, table: PricingTable) -> NormalizedSource:
        """
        Materialize a table's rows.

        Raises:
            SourceUnavailable: If the location is unreachable or the content is corrupt
        """
        if table.source_kind == "builtin":
            if self.builtin_store is None:
                raise SourceUnavailable("builtin", "no builtin store configured")
            return self.builtin_store.as_source()

        sheets = self.read_sheets(table)
        source = classify_sheets(sheets)
        if source.is_empty:
            logger.warning(f"Table '{table.name}' produced no usable rows")
        return source

    def read_sheets(self, table: PricingTable) -> Dict[str, pd.DataFrame]:
        """Fetch and parse the raw sheets of a remote or uploaded table."""
        location = table.location or ""
        if table.source_kind == "remote_spreadsheet":
            location = to_workbook_export_url(location)

        content = self.fetcher.fetch_bytes(location)
        if not content:
            raise SourceUnavailable(location, "empty content")

        try:
            if _extension(location) == ".csv":
                return {PurePosixPath(location).stem or "csv": self._read_csv(content)}
            if table.source_kind == "uploaded_file":
                df = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str)
                return {"Sheet1": df}
            return pd.read_excel(io.BytesIO(content), sheet_name=None, dtype=str)
        except Exception as e:
            logger.error(f"Error parsing table '{table.name}' from {location}: {str(e)}", exc_info=True)
            raise SourceUnavailable(location, f"corrupt content: {e}") from e

    @staticmethod
    def _read_csv(content: bytes) -> pd.DataFrame:
        # Try different encodings before giving up
        for encoding in ("utf-8", "latin1", "cp1252"):
            try:
                return pd.read_csv(io.BytesIO(content), encoding=encoding, dtype=str, sep=None, engine="python")
            except UnicodeDecodeError:
                logger.warning(f"Could not decode CSV as {encoding}, trying next encoding")
        raise ValueError("Unable to decode CSV content")
