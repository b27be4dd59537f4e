"""
Rate Resolution Engine - Rate Lookup

Pure function from (normalized source, postal code, weight) to a single
PriceTier. Single-sheet sources match postal and weight ranges on the same
row; joined sources resolve postal code -> zone label on the coverage rows
first, then zone label + weight on the price rows.
"""

import logging
from typing import List, Optional

import pandas as pd

from rate_engine.core.config import settings
from rate_engine.core.exceptions import AmbiguousTier, TierNotFound, WeightRange, ZoneNotCovered
from rate_engine.schemas.models import PriceTier, normalize_postal_code
from rate_engine.services.sources import JoinedSheetSource, NormalizedSource, row_to_tier

logger = logging.getLogger('rate_engine.rate_lookup')


def _weight_ranges(rows: pd.DataFrame) -> List[WeightRange]:
    pairs = {(float(lo), float(hi)) for lo, hi in zip(rows["weight_min"], rows["weight_max"])}
    return sorted(pairs)


def _postal_mask(rows: pd.DataFrame, cep: str) -> pd.Series:
    return (rows["postal_start"] <= cep) & (rows["postal_end"] >= cep)


def _select_tier(
    candidates: pd.DataFrame,
    cep: str,
    weight: float,
    group: Optional[str],
    strict: bool,
    allow_excess: bool,
) -> pd.Series:
    """Pick the row whose weight range contains the weight."""
    candidates = candidates.sort_values("weight_min", kind="stable")
    matches = candidates[(candidates["weight_min"] <= weight) & (candidates["weight_max"] >= weight)]

    if matches.empty:
        if allow_excess and not candidates.empty and weight > candidates["weight_max"].max():
            heaviest = candidates.loc[candidates["weight_max"].idxmax()]
            logger.debug(f"{weight}kg above every tier of {group}, using heaviest tier for excess rule")
            return heaviest
        raise TierNotFound(cep, weight, zone=group, available_ranges=_weight_ranges(candidates))

    if len(matches) > 1:
        if strict:
            raise AmbiguousTier(cep, weight, len(matches))
        logger.warning(
            f"{len(matches)} tiers match {weight}kg at {cep} ({group}), using the lightest"
        )
    return matches.iloc[0]


def lookup(
    source: NormalizedSource,
    postal_code: str,
    weight: float,
    *,
    strict: bool = False,
    allow_excess: bool = False,
    default_days: Optional[int] = None,
) -> PriceTier:
    """
    Find the price tier for a postal code and weight.

    Args:
        source: Normalized single or joined source
        postal_code: Destination CEP, padded to 8 digits if shorter
        weight: Weight in kg used for matching
        strict: Raise AmbiguousTier instead of returning the first overlapping tier
        allow_excess: Return the heaviest tier when the weight exceeds every tier

    Raises:
        ZoneNotCovered: No row covers the postal code
        TierNotFound: The postal code is covered but no tier contains the weight
        AmbiguousTier: Several tiers match and strict is set
    """
    cep = normalize_postal_code(postal_code)
    days = default_days if default_days is not None else settings.DEFAULT_LEAD_TIME_DAYS

    if isinstance(source, JoinedSheetSource):
        return _lookup_joined(source, cep, weight, strict, allow_excess, days)

    rows = source.usable_rows()
    if rows.empty:
        raise ZoneNotCovered(cep)

    in_range = rows[_postal_mask(rows, cep)]
    if in_range.empty:
        raise ZoneNotCovered(cep)

    first = in_range.iloc[0]
    label = first["zone_label"]
    group = label if isinstance(label, str) and label else f"{first['postal_start']}-{first['postal_end']}"
    row = _select_tier(in_range, cep, weight, group, strict, allow_excess)
    return row_to_tier(row, days)


def _lookup_joined(
    source: JoinedSheetSource,
    cep: str,
    weight: float,
    strict: bool,
    allow_excess: bool,
    days: int,
) -> PriceTier:
    coverage = source.usable_coverage()
    if coverage.empty:
        raise ZoneNotCovered(cep)

    covering = coverage[_postal_mask(coverage, cep)]
    if covering.empty:
        raise ZoneNotCovered(cep)

    cov = covering.iloc[0]
    label = str(cov["zone_label"])

    prices = source.usable_prices()
    candidates = prices[prices["zone_label"].astype(str).str.lower() == label.lower()]
    row = _select_tier(candidates, cep, weight, label, strict, allow_excess)

    lead = row.get("lead_time_days")
    express_lead = row.get("express_lead_time_days")
    return row_to_tier(
        row,
        days,
        postal_start=cov["postal_start"],
        postal_end=cov["postal_end"],
        zone_label=label,
        lead_time_days=cov["lead_time_days"] if pd.isna(lead) else lead,
        express_lead_time_days=cov["express_lead_time_days"] if pd.isna(express_lead) else express_lead,
    )
