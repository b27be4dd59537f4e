"""
Rate Resolution Engine - Zone Directory

Maps postal-code (CEP) ranges to named rating zones. Ranges are kept sorted
by start so a lookup is a single bisect over the starts.
"""

import bisect
import logging
from typing import Iterable, List, Optional

import pandas as pd

from rate_engine.core.exceptions import ReferenceDataError, ZoneNotCovered
from rate_engine.schemas.models import Zone, normalize_postal_code

logger = logging.getLogger('rate_engine.zone_directory')


class ZoneDirectory:
    """Sorted, non-overlapping postal-code ranges resolved to zones."""

    def __init__(self, zones: Iterable[Zone]):
        self._zones: List[Zone] = sorted(zones, key=lambda z: (z.postal_start, z.postal_end))
        self._starts: List[str] = [z.postal_start for z in self._zones]
        self._check_ranges()
        logger.info(f"Zone directory loaded with {len(self._zones)} zones")

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ZoneDirectory":
        """
        Build a directory from a zones DataFrame.

        Expected columns: zone_code, state, zone_type, cep_start, cep_end,
        delivery_days and optionally express_delivery_days.
        """
        zones = []
        for idx, row in df.iterrows():
            try:
                express = row.get("express_delivery_days")
                zones.append(Zone(
                    zone_code=str(row["zone_code"]).strip(),
                    state=str(row["state"]).strip().upper(),
                    zone_type=str(row.get("zone_type", "capital")).strip().lower(),
                    postal_start=row["cep_start"],
                    postal_end=row["cep_end"],
                    delivery_days=int(row.get("delivery_days", 5)),
                    express_delivery_days=None if pd.isna(express) else int(express),
                ))
            except (KeyError, ValueError, TypeError) as e:
                raise ReferenceDataError(f"Invalid zone row {idx}: {e}")
        return cls(zones)

    def _check_ranges(self) -> None:
        for zone in self._zones:
            if zone.postal_start > zone.postal_end:
                raise ReferenceDataError(
                    f"Zone {zone.zone_code} has start {zone.postal_start} after end {zone.postal_end}"
                )
        for previous, current in zip(self._zones, self._zones[1:]):
            if current.postal_start <= previous.postal_end:
                raise ReferenceDataError(
                    f"Zones {previous.zone_code} and {current.zone_code} overlap "
                    f"({previous.postal_start}-{previous.postal_end} / "
                    f"{current.postal_start}-{current.postal_end})"
                )

    @property
    def zones(self) -> List[Zone]:
        return list(self._zones)

    def __len__(self) -> int:
        return len(self._zones)

    def find_zone(self, postal_code: str) -> Optional[Zone]:
        cep = normalize_postal_code(postal_code)
        if not cep:
            return None
        idx = bisect.bisect_right(self._starts, cep) - 1
        if idx < 0:
            return None
        zone = self._zones[idx]
        return zone if cep <= zone.postal_end else None

    def resolve_zone(self, postal_code: str) -> Zone:
        """
        Resolve a postal code to its zone.

        Raises:
            ZoneNotCovered: If no zone range contains the postal code
        """
        zone = self.find_zone(postal_code)
        if zone is None:
            raise ZoneNotCovered(normalize_postal_code(postal_code) or str(postal_code))
        return zone

    def get(self, zone_code: str) -> Optional[Zone]:
        code = str(zone_code).strip().lower()
        for zone in self._zones:
            if zone.zone_code.lower() == code:
                return zone
        return None
