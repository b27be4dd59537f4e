"""
Rate Resolution Engine - Commercial Rules

Per-table pricing rules applied around a matched tier: maximum dimensions,
volumetric (cubic) weight, excess-weight charge, ad valorem and GRIS
surcharges, and the derived express figures.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from rate_engine.core.config import settings
from rate_engine.schemas.models import PriceTier, PricingTable, Quote

logger = logging.getLogger('rate_engine.pricing')


@dataclass
class ShipmentOptions:
    """Optional parcel details that drive the commercial rules."""
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None
    merchandise_value: Optional[float] = None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.length_cm and self.width_cm and self.height_cm)


def exceeds_max_dimensions(table: PricingTable, options: ShipmentOptions) -> bool:
    """True if any parcel dimension is above the table's configured maximum."""
    if not options.has_dimensions:
        return False
    checks = (
        ("length", options.length_cm, table.max_length_cm),
        ("width", options.width_cm, table.max_width_cm),
        ("height", options.height_cm, table.max_height_cm),
    )
    for name, value, limit in checks:
        if limit and value > limit:
            logger.info(f"Table {table.name}: {name} {value}cm exceeds maximum {limit}cm")
            return True
    return False


def cubic_weight(table: PricingTable, options: ShipmentOptions) -> Optional[float]:
    """Volumetric weight: volume in m3 times the table's kg-per-m3 factor."""
    if not options.has_dimensions or not table.cubic_meter_kg_equivalent:
        return None
    volume_m3 = (options.length_cm / 100) * (options.width_cm / 100) * (options.height_cm / 100)
    return volume_m3 * table.cubic_meter_kg_equivalent


def applied_weight(table: PricingTable, weight: float, options: ShipmentOptions):
    """
    Weight used for tier matching: the larger of real and volumetric weight.

    Returns:
        Tuple of (applied weight, cubic weight or None)
    """
    cubic = cubic_weight(table, options)
    if cubic is None:
        return weight, None
    applied = max(weight, cubic)
    logger.debug(f"Real weight {weight}kg, cubic weight {cubic:.2f}kg, applied {applied:.2f}kg")
    return applied, cubic


def excess_weight_charge(table: PricingTable, weight: float) -> float:
    """Charge on the real weight above the table's threshold."""
    if not table.has_excess_rule or weight <= table.excess_weight_threshold_kg:
        return 0.0
    return (weight - table.excess_weight_threshold_kg) * table.excess_weight_charge_per_kg


def _percentage(value: Optional[float], percentage: Optional[float]) -> Optional[float]:
    if not value or value <= 0 or not percentage or percentage <= 0:
        return None
    return value * percentage / 100


def express_days(economic_days: int) -> int:
    return max(1, economic_days - settings.EXPRESS_DAYS_REDUCTION)


def build_quote(
    table: PricingTable,
    tier: PriceTier,
    *,
    zone: str,
    zone_name: str,
    weight: float,
    quantity: int,
    options: Optional[ShipmentOptions] = None,
    applied: Optional[float] = None,
    cubic: Optional[float] = None,
) -> Quote:
    """
    Assemble a Quote from a matched tier.

    Total = unit price x quantity + ad valorem + GRIS + excess charge.
    Express figures come from the tier when it carries them, otherwise
    they are derived from the economic ones.
    """
    options = options or ShipmentOptions()

    ad_valorem = _percentage(options.merchandise_value, table.ad_valorem_percentage)
    gris = _percentage(options.merchandise_value, table.gris_percentage)
    excess = excess_weight_charge(table, weight)
    surcharges = (ad_valorem or 0.0) + (gris or 0.0) + excess

    economic = round(tier.price * quantity + surcharges, 2)
    if tier.express_price is not None and tier.express_price > 0:
        express = tier.express_price * quantity + surcharges
    else:
        express = economic * settings.EXPRESS_PRICE_MULTIPLIER

    days = tier.lead_time_days
    if tier.express_lead_time_days is not None and tier.express_lead_time_days > 0:
        fast_days = tier.express_lead_time_days
    else:
        fast_days = express_days(days)

    return Quote(
        economic_price=economic,
        express_price=round(express, 2),
        economic_days=days,
        express_days=fast_days,
        zone=zone,
        zone_name=zone_name,
        table_id=table.id,
        table_name=table.name,
        cnpj=table.cnpj,
        applied_weight=applied,
        cubic_weight=round(cubic, 3) if cubic is not None else None,
        ad_valorem_value=round(ad_valorem, 2) if ad_valorem is not None else None,
        gris_value=round(gris, 2) if gris is not None else None,
        excess_weight_charge=round(excess, 2) if excess else None,
    )
