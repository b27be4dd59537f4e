"""
Normalized pricing sources.

Every physical source (remote workbook, uploaded file, builtin store) is
materialized into one of two shapes, decided once at load time:

- SingleSheetSource: self-contained rows carrying postal range, weight
  range, price and lead time.
- JoinedSheetSource: a coverage frame (postal range -> zone label, lead
  time) and a price frame (zone label + weight range -> price), joined by
  zone label at lookup time.

Rows are kept even when malformed (non-numeric cells become NaN) so the
table validator can report them; lookups go through usable_* helpers.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import pandas as pd

from rate_engine.schemas.models import PriceTier

DEFAULT_ZONE_LABEL = "PADRAO"

TIER_COLUMNS = [
    "postal_start", "postal_end", "weight_min", "weight_max", "price",
    "lead_time_days", "zone_label", "express_price", "express_lead_time_days",
    "sheet", "row_index",
]
COVERAGE_COLUMNS = [
    "postal_start", "postal_end", "zone_label", "lead_time_days",
    "express_lead_time_days", "sheet", "row_index",
]
PRICE_COLUMNS = [
    "zone_label", "weight_min", "weight_max", "price", "lead_time_days",
    "express_price", "express_lead_time_days", "sheet", "row_index",
]


def empty_frame(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype="object") for col in columns})


def _postal_usable(series: pd.Series) -> pd.Series:
    lengths = series.fillna("").astype(str).str.len()
    return (lengths > 0) & (lengths <= 8)


def _pad_postal(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out["postal_start"] = out["postal_start"].astype(str).str.zfill(8)
    out["postal_end"] = out["postal_end"].astype(str).str.zfill(8)
    return out


def _opt_float(value) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def _opt_int(value) -> Optional[int]:
    return None if pd.isna(value) else int(value)


def _opt_str(value) -> Optional[str]:
    return None if value is None or pd.isna(value) else str(value)


def _has_column(present: Dict[str, List[str]], sheet: Optional[str], name: str) -> bool:
    """Whether a sheet carried a column; unknown sheets are assumed complete."""
    if sheet not in present:
        return True
    return name in present[sheet]


def row_to_tier(row: pd.Series, default_days: int, **overrides) -> PriceTier:
    """Convert one normalized row into a PriceTier."""
    data = {col: row.get(col) for col in TIER_COLUMNS}
    data.update(overrides)
    days = _opt_int(data.get("lead_time_days"))
    return PriceTier(
        postal_start=_opt_str(data.get("postal_start")),
        postal_end=_opt_str(data.get("postal_end")),
        weight_min=float(data["weight_min"]),
        weight_max=float(data["weight_max"]),
        price=float(data["price"]),
        lead_time_days=days if days and days > 0 else default_days,
        zone_label=_opt_str(data.get("zone_label")),
        express_price=_opt_float(data.get("express_price")),
        express_lead_time_days=_opt_int(data.get("express_lead_time_days")),
        sheet=_opt_str(data.get("sheet")),
        row_index=_opt_int(data.get("row_index")),
    )


@dataclass
class SingleSheetSource:
    """Self-contained rows, possibly concatenated from several sheets."""

    rows: pd.DataFrame = field(default_factory=lambda: empty_frame(TIER_COLUMNS))
    sheets: List[str] = field(default_factory=list)
    missing_columns: Dict[str, List[str]] = field(default_factory=dict)
    present_columns: Dict[str, List[str]] = field(default_factory=dict)

    kind = "single"

    @property
    def is_empty(self) -> bool:
        return self.usable_rows().empty

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def has_column(self, sheet: Optional[str], name: str) -> bool:
        return _has_column(self.present_columns, sheet, name)

    def usable_rows(self) -> pd.DataFrame:
        """Rows with a usable postal range, both weight bounds and a positive price."""
        df = self.rows
        if df.empty:
            return df
        mask = (
            _postal_usable(df["postal_start"])
            & _postal_usable(df["postal_end"])
            & df["weight_min"].notna()
            & df["weight_max"].notna()
            & (pd.to_numeric(df["price"], errors="coerce") > 0)
        )
        return _pad_postal(df[mask])

    def tiers(self, default_days: int = 5) -> List[PriceTier]:
        return [row_to_tier(row, default_days) for _, row in self.usable_rows().iterrows()]


@dataclass
class JoinedSheetSource:
    """Coverage rows and price rows joined by zone label."""

    coverage: pd.DataFrame = field(default_factory=lambda: empty_frame(COVERAGE_COLUMNS))
    prices: pd.DataFrame = field(default_factory=lambda: empty_frame(PRICE_COLUMNS))
    coverage_sheet: Optional[str] = None
    price_sheet: Optional[str] = None
    missing_columns: Dict[str, List[str]] = field(default_factory=dict)
    present_columns: Dict[str, List[str]] = field(default_factory=dict)

    kind = "joined"

    @property
    def is_empty(self) -> bool:
        return self.usable_coverage().empty or self.usable_prices().empty

    @property
    def sheets(self) -> List[str]:
        return [s for s in (self.coverage_sheet, self.price_sheet) if s]

    @property
    def total_rows(self) -> int:
        return len(self.coverage) + len(self.prices)

    def has_column(self, sheet: Optional[str], name: str) -> bool:
        return _has_column(self.present_columns, sheet, name)

    def usable_coverage(self) -> pd.DataFrame:
        df = self.coverage
        if df.empty:
            return df
        mask = _postal_usable(df["postal_start"]) & _postal_usable(df["postal_end"])
        return _pad_postal(df[mask])

    def usable_prices(self) -> pd.DataFrame:
        df = self.prices
        if df.empty:
            return df
        mask = (
            df["weight_min"].notna()
            & df["weight_max"].notna()
            & (pd.to_numeric(df["price"], errors="coerce") > 0)
        )
        return df[mask]

    def tiers(self, default_days: int = 5) -> List[PriceTier]:
        """Materialize the join: one tier per (coverage row, matching price row)."""
        tiers: List[PriceTier] = []
        prices = self.usable_prices()
        labels = prices["zone_label"].astype(str).str.lower()
        for _, cov in self.usable_coverage().iterrows():
            label = str(cov["zone_label"]).lower()
            for _, price_row in prices[labels == label].iterrows():
                lead = price_row.get("lead_time_days")
                express_lead = price_row.get("express_lead_time_days")
                tiers.append(row_to_tier(
                    price_row,
                    default_days,
                    postal_start=cov["postal_start"],
                    postal_end=cov["postal_end"],
                    lead_time_days=cov["lead_time_days"] if pd.isna(lead) else lead,
                    express_lead_time_days=(
                        cov["express_lead_time_days"] if pd.isna(express_lead) else express_lead
                    ),
                ))
        return tiers


NormalizedSource = Union[SingleSheetSource, JoinedSheetSource]
