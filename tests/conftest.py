"""
Shared fixtures for the rate engine tests.

Nothing here touches the network: remote and uploaded tables are served
from an in-memory fetcher keyed by location.
"""

import io
import threading
import time
from typing import Dict, List

import pandas as pd
import pytest

from rate_engine.core.exceptions import SourceUnavailable
from rate_engine.schemas.models import PricingTable
from rate_engine.services.builtin_store import BuiltinRateStore
from rate_engine.services.engine import RateEngine
from rate_engine.services.fetcher import ContentFetcher
from rate_engine.services.quote_cache import QuoteCache
from rate_engine.services.table_registry import InMemoryTableRegistry


# =============================================================================
# HELPERS
# =============================================================================

class FakeFetcher(ContentFetcher):
    """Serves bytes by location and records every call."""

    def __init__(self, contents: Dict[str, bytes] = None):
        self.contents = dict(contents or {})
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch_bytes(self, location: str) -> bytes:
        with self._lock:
            self.calls.append(location)
        if location in self.delays:
            time.sleep(self.delays[location])
        if location in self.failures:
            raise self.failures[location]
        if location not in self.contents:
            raise SourceUnavailable(location, "not found")
        return self.contents[location]


def csv_bytes(rows: List[dict], encoding: str = "utf-8") -> bytes:
    return pd.DataFrame(rows).to_csv(index=False).encode(encoding)


def xlsx_bytes(sheets: Dict[str, List[dict]]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


def tier_row(start, end, wmin, wmax, price, days=5, zone=None) -> dict:
    row = {
        "CEP_INICIO": start,
        "CEP_FIM": end,
        "PESO_MIN": wmin,
        "PESO_MAX": wmax,
        "PRECO": price,
        "PRAZO": days,
    }
    if zone is not None:
        row["ZONA"] = zone
    return row


def uploaded_table(table_id: str, name: str = None, **rules) -> PricingTable:
    return PricingTable(
        id=table_id,
        name=name or table_id,
        source_kind="uploaded_file",
        location=f"tables/{table_id}.csv",
        validation_status="valid",
        **rules,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def zones_frame():
    return pd.DataFrame([
        {"zone_code": "SPCAP.01", "state": "SP", "zone_type": "capital", "cep_start": "01000000",
         "cep_end": "05999999", "delivery_days": 2, "express_delivery_days": 1},
        {"zone_code": "GOCAP.01", "state": "GO", "zone_type": "capital", "cep_start": "74000000",
         "cep_end": "74999999", "delivery_days": 4, "express_delivery_days": 2},
        {"zone_code": "RSINT.01", "state": "RS", "zone_type": "interior", "cep_start": "92000000",
         "cep_end": "99999999", "delivery_days": 6, "express_delivery_days": 4},
    ])


@pytest.fixture
def pricing_frame():
    return pd.DataFrame([
        {"zone_code": "SPCAP.01", "weight_min": 0, "weight_max": 10, "price": 12.90},
        {"zone_code": "SPCAP.01", "weight_min": 10, "weight_max": 30, "price": 28.60},
        {"zone_code": "GOCAP.01", "weight_min": 0, "weight_max": 5, "price": 18.50},
        {"zone_code": "GOCAP.01", "weight_min": 5, "weight_max": 30, "price": 41.30},
        {"zone_code": "RSINT.01", "weight_min": 0, "weight_max": 5, "price": 22.40},
    ])


@pytest.fixture
def builtin_store(zones_frame, pricing_frame):
    return BuiltinRateStore(zones_frame, pricing_frame)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def registry():
    return InMemoryTableRegistry()


@pytest.fixture
def engine(registry, builtin_store, fetcher):
    return RateEngine(registry, builtin_store=builtin_store, fetcher=fetcher, cache=QuoteCache(ttl_seconds=120))
