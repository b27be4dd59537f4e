"""
Rate Resolution Engine - Multi-Source Quoter

Fans one quote request out to every active, valid pricing table, each
bounded by its own timeout, and keeps the cheapest result. When no table
resolves, the builtin relational store is the fallback; when that fails
too the request ends in NoCoverage with diagnostic detail.
"""

import asyncio
import logging
import math
import re
from typing import List, Optional, Tuple, Union

from rate_engine.core.config import settings
from rate_engine.core.exceptions import (
    InvalidDestination,
    InvalidQuoteRequest,
    NoCoverage,
    RateLookupError,
    ReferenceDataError,
    SourceUnavailable,
    TierNotFound,
    WeightExceeded,
    ZoneNotCovered,
)
from rate_engine.schemas.models import PriceTier, PricingTable, Quote
from rate_engine.services.builtin_store import BuiltinRateStore
from rate_engine.services.pricing import (
    ShipmentOptions,
    applied_weight,
    build_quote,
    exceeds_max_dimensions,
)
from rate_engine.services.rate_lookup import lookup
from rate_engine.services.sheet_adapter import SheetAdapter
from rate_engine.services.table_registry import TableRegistry

logger = logging.getLogger('rate_engine.quoter')

BUILTIN_TABLE = PricingTable(
    id="builtin",
    name="Builtin rates",
    source_kind="builtin",
    validation_status="valid",
    registration_order=0,
)

# (quote, registration order)
Candidate = Tuple[Quote, int]
# A table that covers the postal code but has no tier for the weight
Miss = Tuple[PricingTable, TierNotFound]


def clean_postal_code(postal_code) -> str:
    """
    Strip the mask from a destination postal code and check its shape.

    Raises:
        InvalidDestination: Unless exactly 8 digits remain and they are not all zero
    """
    digits = re.sub(r"\D", "", str(postal_code or ""))
    if len(digits) != 8 or set(digits) == {"0"}:
        raise InvalidDestination(postal_code)
    return digits


def check_request(weight: float, quantity: int, options: ShipmentOptions, max_weight: float) -> None:
    """
    Reject requests that no source could ever price.

    Raises:
        WeightExceeded: weight above the business ceiling
        InvalidQuoteRequest: non-positive weight, quantity or dimensions
    """
    if weight is None or isinstance(weight, bool) or not isinstance(weight, (int, float)) or math.isnan(weight):
        raise InvalidQuoteRequest(f"Weight must be a number, got {weight!r}")
    if weight > max_weight:
        raise WeightExceeded(weight, max_weight)
    if weight <= 0:
        raise InvalidQuoteRequest(f"Weight must be positive, got {weight}")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise InvalidQuoteRequest(f"Quantity must be a positive integer, got {quantity!r}")
    for name in ("length_cm", "width_cm", "height_cm"):
        value = getattr(options, name)
        if value is not None and value <= 0:
            raise InvalidQuoteRequest(f"{name} must be positive, got {value}")
    if options.merchandise_value is not None and options.merchandise_value < 0:
        raise InvalidQuoteRequest(f"merchandise_value cannot be negative, got {options.merchandise_value}")


class MultiSourceQuoter:
    """Concurrent, per-source-timeout quoting over the registered tables."""

    def __init__(
        self,
        registry: TableRegistry,
        adapter: SheetAdapter,
        builtin_store: Optional[BuiltinRateStore] = None,
        timeout_seconds: Optional[float] = None,
        strict: Optional[bool] = None,
        max_weight: Optional[float] = None,
    ):
        self.registry = registry
        self.adapter = adapter
        self.builtin_store = builtin_store
        self.timeout_seconds = settings.QUOTE_SOURCE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.strict = settings.STRICT_TIER_MATCHING if strict is None else strict
        self.max_weight = settings.MAX_WEIGHT_KG if max_weight is None else max_weight

    async def quote(
        self,
        postal_code: str,
        weight: float,
        quantity: int = 1,
        *,
        length_cm: Optional[float] = None,
        width_cm: Optional[float] = None,
        height_cm: Optional[float] = None,
        merchandise_value: Optional[float] = None,
    ) -> Quote:
        """
        Resolve the cheapest quote across all active sources.

        Raises:
            WeightExceeded: weight above the ceiling, checked before anything else
            InvalidDestination: malformed postal code
            InvalidQuoteRequest: non-positive weight, quantity or dimensions
            NoCoverage: neither the tables nor the builtin store can price the request
        """
        options = ShipmentOptions(length_cm, width_cm, height_cm, merchandise_value)
        check_request(weight, quantity, options, self.max_weight)
        cep = clean_postal_code(postal_code)

        tables = await asyncio.to_thread(self.registry.list_active_pricing_tables)
        logger.info(f"Quoting {cep} {weight}kg x{quantity} across {len(tables)} active tables")

        candidates, misses = await self._gather(tables, cep, weight, quantity, options)
        best = self.select_best(candidates)
        if best is not None:
            logger.info(
                f"Best quote for {cep}: {best.table_name} R$ {best.economic_price:.2f} "
                f"({best.economic_days} days) out of {len(candidates)} results"
            )
            return best

        logger.info(f"No table resolved {cep} {weight}kg, falling back to builtin rates")
        return await asyncio.to_thread(self._quote_builtin, cep, weight, quantity, options, misses)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    async def _gather(
        self,
        tables: List[PricingTable],
        cep: str,
        weight: float,
        quantity: int,
        options: ShipmentOptions,
    ) -> Tuple[List[Candidate], List[Miss]]:
        if not tables:
            return [], []
        tasks = [
            asyncio.create_task(self._quote_source(table, cep, weight, quantity, options))
            for table in tables
        ]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        candidates: List[Candidate] = []
        misses: List[Miss] = []
        for table, result in zip(tables, results):
            if isinstance(result, Quote):
                candidates.append((result, table.registration_order))
            elif isinstance(result, TierNotFound):
                misses.append((table, result))
        return candidates, misses

    async def _quote_source(
        self,
        table: PricingTable,
        cep: str,
        weight: float,
        quantity: int,
        options: ShipmentOptions,
    ) -> Union[Quote, TierNotFound, None]:
        """
        One source; every failure is logged and contributes no quote.

        A TierNotFound is handed back so the caller can still explain which
        weights this table does price.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.resolve_table, table, cep, weight, quantity, options),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Table {table.name} timed out after {self.timeout_seconds}s")
        except SourceUnavailable as e:
            logger.warning(f"Table {table.name} unavailable: {e}")
        except TierNotFound as e:
            logger.info(f"Table {table.name} has no tier: {e}")
            return e
        except RateLookupError as e:
            logger.info(f"Table {table.name} has no rate: {e}")
        except Exception as e:
            logger.error(f"Unexpected error quoting table {table.name}: {str(e)}", exc_info=True)
        return None

    def resolve_table(
        self,
        table: PricingTable,
        cep: str,
        weight: float,
        quantity: int,
        options: ShipmentOptions,
    ) -> Optional[Quote]:
        """Adapter + lookup + commercial rules for one table (blocking)."""
        if exceeds_max_dimensions(table, options):
            return None

        applied, cubic = applied_weight(table, weight, options)
        source = self.adapter.load(table)
        if source.is_empty:
            return None

        tier = lookup(source, cep, applied, strict=self.strict, allow_excess=table.has_excess_rule)
        zone, zone_name = self._zone_naming(table, tier)
        return build_quote(
            table,
            tier,
            zone=zone,
            zone_name=zone_name,
            weight=weight,
            quantity=quantity,
            options=options,
            applied=applied,
            cubic=cubic,
        )

    def _builtin_zone_name(self, zone_code: Optional[str]) -> Optional[str]:
        if not zone_code or self.builtin_store is None:
            return zone_code
        zone = self.builtin_store.zone_directory().get(zone_code)
        return zone.name if zone else zone_code

    def _zone_naming(self, table: PricingTable, tier: PriceTier) -> Tuple[str, str]:
        label = tier.zone_label or "AUTO"
        if table.source_kind == "builtin":
            return label, self._builtin_zone_name(label)
        return label, f"{table.name} - Zona {label}"

    @staticmethod
    def select_best(candidates: List[Candidate]) -> Optional[Quote]:
        """Lowest economic price, then shortest economic days, then registration order."""
        if not candidates:
            return None
        quote, _ = min(candidates, key=lambda c: (c[0].economic_price, c[0].economic_days, c[1]))
        return quote

    # ------------------------------------------------------------------
    # Builtin fallback
    # ------------------------------------------------------------------
    def _quote_builtin(
        self,
        cep: str,
        weight: float,
        quantity: int,
        options: ShipmentOptions,
        misses: Optional[List[Miss]] = None,
    ) -> Quote:
        """
        Price the request from the builtin store (blocking).

        Raises:
            NoCoverage: builtin diagnostics when the store knows the zone,
                otherwise those of the first table that covered the postal code
        """
        if self.builtin_store is None:
            raise self._no_coverage(cep, weight, misses)

        try:
            source = self.builtin_store.as_source()
            tier = lookup(source, cep, weight, strict=False)
            zone, zone_name = self._zone_naming(BUILTIN_TABLE, tier)
        except ZoneNotCovered:
            logger.warning(f"Postal code {cep} is not covered by the builtin rates")
            raise self._no_coverage(cep, weight, misses)
        except TierNotFound as e:
            logger.warning(f"No builtin tier for {weight}kg in zone {e.zone}")
            raise NoCoverage(
                NoCoverage.WEIGHT_NOT_CONFIGURED,
                cep,
                weight,
                zone=e.zone,
                zone_name=self._builtin_zone_name(e.zone),
                available_ranges=e.available_ranges,
            )
        except ReferenceDataError as e:
            logger.error(f"Builtin reference data is invalid: {str(e)}")
            raise self._no_coverage(cep, weight, misses)

        return build_quote(
            BUILTIN_TABLE,
            tier,
            zone=zone,
            zone_name=zone_name,
            weight=weight,
            quantity=quantity,
            options=options,
            applied=weight,
        )

    @staticmethod
    def _no_coverage(cep: str, weight: float, misses: Optional[List[Miss]]) -> NoCoverage:
        if not misses:
            logger.warning(f"Postal code {cep} is not covered by any source")
            return NoCoverage(NoCoverage.POSTAL_CODE_NOT_COVERED, cep, weight)

        # Tables arrive in registration order
        table, miss = misses[0]
        zone = miss.zone or "AUTO"
        logger.warning(f"No tier for {weight}kg at {cep}; {table.name} covers zone {zone}")
        return NoCoverage(
            NoCoverage.WEIGHT_NOT_CONFIGURED,
            cep,
            weight,
            zone=zone,
            zone_name=f"{table.name} - Zona {zone}",
            available_ranges=miss.available_ranges,
        )
