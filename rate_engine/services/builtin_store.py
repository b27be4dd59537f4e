"""
Rate Resolution Engine - Builtin Rate Store

The relational fallback source: a zones table (postal range -> zone code,
state, zone type, lead times) and a shipping pricing table (zone code +
weight range -> price). Loaded from the packaged CSV reference data or
from injected DataFrames.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from rate_engine.core.config import settings
from rate_engine.core.exceptions import ReferenceDataError
from rate_engine.schemas.models import normalize_postal_code
from rate_engine.services.sources import COVERAGE_COLUMNS, PRICE_COLUMNS, JoinedSheetSource
from rate_engine.services.zone_directory import ZoneDirectory

logger = logging.getLogger('rate_engine.builtin_store')

ZONES_FILE = "shipping_zones.csv"
PRICING_FILE = "shipping_pricing.csv"

ZONE_COLUMNS = ["zone_code", "state", "zone_type", "cep_start", "cep_end", "delivery_days", "express_delivery_days"]
PRICING_COLUMNS = ["zone_code", "weight_min", "weight_max", "price"]


class BuiltinRateStore:
    """Zones and price tiers queried with range predicates."""

    def __init__(self, zones: pd.DataFrame, pricing: pd.DataFrame):
        missing = [c for c in ZONE_COLUMNS if c not in zones.columns and c != "express_delivery_days"]
        missing += [c for c in PRICING_COLUMNS if c not in pricing.columns]
        if missing:
            raise ReferenceDataError(f"Builtin reference data is missing columns: {missing}")

        self.zones = zones.copy()
        if "express_delivery_days" not in self.zones.columns:
            self.zones["express_delivery_days"] = np.nan
        self.zones["cep_start"] = self.zones["cep_start"].map(normalize_postal_code)
        self.zones["cep_end"] = self.zones["cep_end"].map(normalize_postal_code)
        self.zones["zone_code"] = self.zones["zone_code"].astype(str).str.strip()

        self.pricing = pricing.copy()
        self.pricing["zone_code"] = self.pricing["zone_code"].astype(str).str.strip()
        for col in ("weight_min", "weight_max", "price"):
            self.pricing[col] = pd.to_numeric(self.pricing[col], errors="coerce")

        self._directory: Optional[ZoneDirectory] = None
        logger.info(f"Builtin store loaded with {len(self.zones)} zones and {len(self.pricing)} price tiers")

    @classmethod
    def from_directory(cls, data_dir: Optional[Union[str, Path]] = None) -> "BuiltinRateStore":
        """
        Load the packaged reference CSVs.

        Raises:
            ReferenceDataError: If the files are missing or unreadable
        """
        data_dir = Path(data_dir or settings.BUILTIN_DATA_DIR)
        try:
            logger.info(f"Loading builtin reference data from {data_dir}")
            zones = pd.read_csv(data_dir / ZONES_FILE, dtype={"cep_start": str, "cep_end": str})
            pricing = pd.read_csv(data_dir / PRICING_FILE)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load builtin reference data: {str(e)}")
            raise ReferenceDataError(f"Failed to load builtin reference data: {str(e)}")
        return cls(zones, pricing)

    def zone_directory(self) -> ZoneDirectory:
        if self._directory is None:
            self._directory = ZoneDirectory.from_frame(self.zones)
        return self._directory

    def zones_covering(self, postal_code: str) -> pd.DataFrame:
        """Zones with cep_start <= postal_code <= cep_end."""
        cep = normalize_postal_code(postal_code)
        mask = (self.zones["cep_start"] <= cep) & (self.zones["cep_end"] >= cep)
        return self.zones[mask]

    def tiers_for_zone(self, zone_code: str) -> pd.DataFrame:
        """Price tiers of one zone, lightest first."""
        mask = self.pricing["zone_code"].str.lower() == str(zone_code).strip().lower()
        return self.pricing[mask].sort_values("weight_min", kind="stable")

    def as_source(self) -> JoinedSheetSource:
        """Expose the store as a joined source: zones as coverage, tiers as prices."""
        coverage = pd.DataFrame({
            "postal_start": self.zones["cep_start"],
            "postal_end": self.zones["cep_end"],
            "zone_label": self.zones["zone_code"],
            "lead_time_days": pd.to_numeric(self.zones["delivery_days"], errors="coerce"),
            "express_lead_time_days": pd.to_numeric(self.zones["express_delivery_days"], errors="coerce"),
            "sheet": ZONES_FILE,
            "row_index": range(2, len(self.zones) + 2),
        })
        prices = pd.DataFrame({
            "zone_label": self.pricing["zone_code"],
            "weight_min": self.pricing["weight_min"],
            "weight_max": self.pricing["weight_max"],
            "price": self.pricing["price"],
            "lead_time_days": np.nan,
            "express_price": np.nan,
            "express_lead_time_days": np.nan,
            "sheet": PRICING_FILE,
            "row_index": range(2, len(self.pricing) + 2),
        })
        return JoinedSheetSource(
            coverage=coverage[COVERAGE_COLUMNS].reset_index(drop=True),
            prices=prices[PRICE_COLUMNS].reset_index(drop=True),
            coverage_sheet=ZONES_FILE,
            price_sheet=PRICING_FILE,
        )
