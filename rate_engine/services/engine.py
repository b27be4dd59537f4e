"""
Rate Resolution Engine - facade

Wires the cache, quoter, adapter, validator and registry together and
exposes the two entry points used by the surrounding application:
quote() on the request path and validate_table() for administrative audits.
"""

import logging
from functools import lru_cache
from typing import Optional

from rate_engine.core.config import settings
from rate_engine.core.exceptions import ReferenceDataError, SourceUnavailable, UnknownTable
from rate_engine.schemas.models import Quote, ValidationIssue, ValidationResult
from rate_engine.services.builtin_store import BuiltinRateStore
from rate_engine.services.fetcher import ContentFetcher, HttpContentFetcher
from rate_engine.services.pricing import ShipmentOptions
from rate_engine.services.quote_cache import QuoteCache
from rate_engine.services.quoter import MultiSourceQuoter, check_request, clean_postal_code
from rate_engine.services.sheet_adapter import SheetAdapter
from rate_engine.services.table_registry import InMemoryTableRegistry, JsonTableRegistry, TableRegistry
from rate_engine.services.table_validator import TableValidator

logger = logging.getLogger('rate_engine.engine')


class RateEngine:
    """High level facade for quoting and table audits."""

    def __init__(
        self,
        registry: TableRegistry,
        builtin_store: Optional[BuiltinRateStore] = None,
        fetcher: Optional[ContentFetcher] = None,
        cache: Optional[QuoteCache] = None,
        validator: Optional[TableValidator] = None,
        adapter: Optional[SheetAdapter] = None,
    ):
        self.registry = registry
        self.builtin_store = builtin_store
        self.adapter = adapter or SheetAdapter(fetcher or HttpContentFetcher(), builtin_store)
        self.cache = cache or QuoteCache()
        self.validator = validator or TableValidator()
        self.quoter = MultiSourceQuoter(registry, self.adapter, builtin_store)

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
        Cheapest quote for a parcel, served from the cache within its TTL.

        Raises:
            WeightExceeded, InvalidDestination, InvalidQuoteRequest, NoCoverage
        """
        options = {
            "length_cm": length_cm,
            "width_cm": width_cm,
            "height_cm": height_cm,
            "merchandise_value": merchandise_value,
        }
        # Validate first: only well-formed requests may be answered from the cache
        check_request(weight, quantity, ShipmentOptions(**options), self.quoter.max_weight)
        cep = clean_postal_code(postal_code)

        cached = self.cache.get(cep, weight, quantity, **options)
        if cached is not None:
            return cached

        quote = await self.quoter.quote(cep, weight, quantity, **options)
        self.cache.put(cep, weight, quantity, quote, **options)
        return quote

    def validate_table(self, table_id: str) -> ValidationResult:
        """
        Audit one registered table and persist the verdict on it.

        Raises:
            UnknownTable: If the id is not registered
        """
        table = self.registry.get_table(table_id)
        if table is None:
            raise UnknownTable(table_id)

        logger.info(f"Validating table {table.name} ({table.source_kind})")
        try:
            source = self.adapter.load(table)
        except SourceUnavailable as e:
            logger.warning(f"Cannot validate table {table.name}: {e}")
            result = ValidationResult(
                table_id=table.id,
                is_valid=False,
                issues=[ValidationIssue(
                    type="SOURCE_UNAVAILABLE",
                    description=str(e),
                    value=e.location,
                )],
            )
        else:
            result = self.validator.validate(source, zones=self._directory_zones(), table_id=table.id)

        self.registry.update_validation(table.id, result.status, result.issues, result.validated_at)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()

    def _directory_zones(self):
        if self.builtin_store is None:
            return None
        try:
            return self.builtin_store.zone_directory().zones
        except ReferenceDataError as e:
            logger.error(f"Zone directory unavailable, skipping zone completeness: {str(e)}")
            return None


def _build_registry() -> TableRegistry:
    if settings.TABLE_REGISTRY_PATH:
        return JsonTableRegistry(settings.TABLE_REGISTRY_PATH)
    logger.warning("TABLE_REGISTRY_PATH not set, using an in-memory table registry")
    return InMemoryTableRegistry()


@lru_cache(maxsize=1)
def get_rate_engine() -> RateEngine:
    return RateEngine(
        _build_registry(),
        builtin_store=BuiltinRateStore.from_directory(settings.BUILTIN_DATA_DIR),
    )
