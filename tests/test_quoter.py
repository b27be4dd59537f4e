"""
Unit Tests for the Multi-Source Quoter.

Tests source selection, per-source timeouts and failures, the builtin
fallback, request validation and the per-table commercial rules.

Run with: pytest tests/test_quoter.py -v
"""

import asyncio
import threading

import pytest

from conftest import csv_bytes, tier_row, uploaded_table
from rate_engine.core.exceptions import InvalidDestination, InvalidQuoteRequest, NoCoverage, WeightExceeded
from rate_engine.services.quoter import MultiSourceQuoter, clean_postal_code
from rate_engine.services.sheet_adapter import SheetAdapter


SP = ("01000000", "05999999")


def add_table(registry, fetcher, table_id, rows, **rules):
    table = registry.register(uploaded_table(table_id, **rules))
    fetcher.contents[table.location] = csv_bytes(rows)
    return table


def make_quoter(registry, fetcher, builtin_store, **kwargs):
    return MultiSourceQuoter(registry, SheetAdapter(fetcher, builtin_store), builtin_store, **kwargs)


def run_quote(quoter, *args, **kwargs):
    return asyncio.run(quoter.quote(*args, **kwargs))


@pytest.fixture
def quoter(registry, fetcher, builtin_store):
    return make_quoter(registry, fetcher, builtin_store)


# =============================================================================
# SOURCE SELECTION
# =============================================================================

class TestSourceSelection:

    def test_lowest_price_wins(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "carrier_a", [tier_row(*SP, 0, 30, 30.0, 3)])
        add_table(registry, fetcher, "carrier_b", [tier_row(*SP, 0, 30, 25.0, 5)])

        quote = run_quote(quoter, "01310-100", 2)

        assert quote.table_id == "carrier_b"
        assert quote.economic_price == 25.0
        assert quote.express_price == 40.0
        assert quote.express_days == 3

    def test_tie_broken_by_days_then_registration_order(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "first", [tier_row(*SP, 0, 30, 25.0, 5)])
        add_table(registry, fetcher, "second", [tier_row(*SP, 0, 30, 25.0, 5)])
        add_table(registry, fetcher, "third", [tier_row(*SP, 0, 30, 25.0, 6)])

        assert run_quote(quoter, "01310100", 2).table_id == "first"

    def test_invalid_or_inactive_tables_skipped(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "good", [tier_row(*SP, 0, 30, 25.0, 5)])
        invalid = add_table(registry, fetcher, "bad", [tier_row(*SP, 0, 30, 1.0, 5)])
        registry.update_validation(invalid.id, "invalid", [])
        add_table(registry, fetcher, "off", [tier_row(*SP, 0, 30, 2.0, 5)], is_active=False)

        assert run_quote(quoter, "01310100", 2).table_id == "good"

    def test_slow_source_times_out(self, registry, fetcher, builtin_store):
        slow = add_table(registry, fetcher, "slow", [tier_row(*SP, 0, 30, 10.0, 5)])
        add_table(registry, fetcher, "fast", [tier_row(*SP, 0, 30, 25.0, 5)])
        fetcher.delays[slow.location] = 0.5
        quoter = make_quoter(registry, fetcher, builtin_store, timeout_seconds=0.1)

        assert run_quote(quoter, "01310100", 2).table_id == "fast"

    def test_cancelling_the_request_propagates(self, quoter, registry, fetcher):
        slow = add_table(registry, fetcher, "slow", [tier_row(*SP, 0, 30, 10.0, 5)])
        fetcher.delays[slow.location] = 0.5

        async def scenario():
            task = asyncio.create_task(quoter.quote("01310100", 2))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

    def test_failing_sources_ignored(self, quoter, registry, fetcher):
        broken = add_table(registry, fetcher, "broken", [tier_row(*SP, 0, 30, 10.0, 5)])
        fetcher.failures[broken.location] = RuntimeError("boom")
        registry.register(uploaded_table("vanished"))
        add_table(registry, fetcher, "working", [tier_row(*SP, 0, 30, 25.0, 5)])

        assert run_quote(quoter, "01310100", 2).table_id == "working"

    def test_zone_naming_for_sheet_sources(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "labelled", [tier_row(*SP, 0, 30, 25.0, 5, zone="CAPITAL")],
                  name="Transportadora X")
        quote = run_quote(quoter, "01310100", 2)
        assert quote.zone == "CAPITAL"
        assert quote.zone_name == "Transportadora X - Zona CAPITAL"

    def test_zone_label_defaults_to_auto(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "plain", [tier_row(*SP, 0, 30, 25.0, 5)], name="Plain")
        assert run_quote(quoter, "01310100", 2).zone_name == "Plain - Zona AUTO"

    def test_sheet_without_minimum_weight_column_quotes(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "maxonly", [
            {"CEP_INICIO": "01000000", "CEP_FIM": "05999999", "PESO_MAX": 30, "PRECO": 12.0, "PRAZO": 4},
        ])

        quote = run_quote(quoter, "01310100", 2)

        assert quote.table_id == "maxonly"
        assert quote.economic_price == 12.0

    def test_uncovered_by_tables_falls_back_to_builtin(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "sp_only", [tier_row(*SP, 0, 30, 5.0, 5)])
        quote = run_quote(quoter, "74000000", 2)
        assert quote.table_id == "builtin"
        assert quote.zone == "GOCAP.01"


# =============================================================================
# BUILTIN FALLBACK
# =============================================================================

class TestBuiltinFallback:

    def test_quote_from_builtin_rates(self, quoter):
        quote = run_quote(quoter, "74000-000", 2, 2)

        assert quote.economic_price == 37.00
        assert quote.express_price == 59.20
        assert quote.economic_days == 4
        assert quote.express_days == 2
        assert quote.zone == "GOCAP.01"
        assert quote.zone_name == "GO - capital (GOCAP.01)"
        assert quote.table_name == "Builtin rates"

    def test_quantity_scales_price(self, quoter):
        quote = run_quote(quoter, "01310100", 1, 3)
        assert quote.economic_price == 38.70
        assert quote.express_price == 61.92
        assert quote.express_days == 1

    def test_postal_code_not_covered(self, quoter):
        with pytest.raises(NoCoverage) as exc:
            run_quote(quoter, "69000000", 2)
        assert exc.value.reason == NoCoverage.POSTAL_CODE_NOT_COVERED

    def test_weight_not_configured(self, quoter):
        with pytest.raises(NoCoverage) as exc:
            run_quote(quoter, "92000000", 10)
        error = exc.value
        assert error.reason == NoCoverage.WEIGHT_NOT_CONFIGURED
        assert error.zone == "RSINT.01"
        assert error.zone_name == "RS - interior (RSINT.01)"
        assert error.available_ranges == [(0.0, 5.0)]
        assert "0-5kg" in str(error)

    def test_table_ranges_reported_when_builtin_has_no_zone(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "amazonas", [
            tier_row("69000000", "69099999", 0.1, 5, 30.0, 8, zone="AM"),
        ], name="Norte Cargas")

        with pytest.raises(NoCoverage) as exc:
            run_quote(quoter, "69010000", 10)

        error = exc.value
        assert error.reason == NoCoverage.WEIGHT_NOT_CONFIGURED
        assert error.zone == "AM"
        assert error.zone_name == "Norte Cargas - Zona AM"
        assert error.available_ranges == [(0.1, 5.0)]

    def test_builtin_diagnostics_win_over_tables(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "rs_light", [tier_row("92000000", "99999999", 0.1, 2, 30.0, 8, zone="RS")])

        with pytest.raises(NoCoverage) as exc:
            run_quote(quoter, "92000000", 10)

        assert exc.value.zone == "RSINT.01"
        assert exc.value.available_ranges == [(0.0, 5.0)]

    def test_blocking_work_runs_off_the_event_loop(self, registry, fetcher, builtin_store, monkeypatch):
        on_loop_thread = []
        list_tables = registry.list_active_pricing_tables
        as_source = builtin_store.as_source

        def recording(call):
            def wrapper(*args, **kwargs):
                on_loop_thread.append(threading.current_thread() is threading.main_thread())
                return call(*args, **kwargs)
            return wrapper

        monkeypatch.setattr(registry, "list_active_pricing_tables", recording(list_tables))
        monkeypatch.setattr(builtin_store, "as_source", recording(as_source))
        quoter = make_quoter(registry, fetcher, builtin_store)

        run_quote(quoter, "74000000", 2)

        assert on_loop_thread == [False, False]

    def test_without_builtin_store(self, registry, fetcher):
        quoter = MultiSourceQuoter(registry, SheetAdapter(fetcher))
        with pytest.raises(NoCoverage):
            run_quote(quoter, "74000000", 2)


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

class TestRequestValidation:

    def test_weight_ceiling_checked_before_destination(self, quoter):
        with pytest.raises(WeightExceeded):
            run_quote(quoter, "not a cep", 30.5)

    def test_weight_at_ceiling_is_allowed(self, quoter):
        assert run_quote(quoter, "01310100", 30).economic_price == 28.60

    @pytest.mark.parametrize("postal_code", ["00000000", "123", "740000001", "", None])
    def test_invalid_destination(self, quoter, postal_code):
        with pytest.raises(InvalidDestination):
            run_quote(quoter, postal_code, 2)

    @pytest.mark.parametrize("weight, quantity", [(0, 1), (-1, 1), (2, 0), (2, 1.5)])
    def test_invalid_request(self, quoter, weight, quantity):
        with pytest.raises(InvalidQuoteRequest):
            run_quote(quoter, "01310100", weight, quantity)

    def test_non_positive_dimension(self, quoter):
        with pytest.raises(InvalidQuoteRequest):
            run_quote(quoter, "01310100", 2, length_cm=0, width_cm=10, height_cm=10)

    def test_clean_postal_code(self):
        assert clean_postal_code("74.000-000") == "74000000"


# =============================================================================
# COMMERCIAL RULES
# =============================================================================

class TestCommercialRules:

    def test_cubic_weight_selects_heavier_tier(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "cubic", [
            tier_row(*SP, 0, 5, 20.0, 3),
            tier_row(*SP, 5, 30, 50.0, 3),
        ], cubic_meter_kg_equivalent=300)

        quote = run_quote(quoter, "01310100", 2, length_cm=50, width_cm=40, height_cm=30)

        assert quote.economic_price == 50.0
        assert quote.cubic_weight == pytest.approx(18.0)
        assert quote.applied_weight == pytest.approx(18.0)

    def test_ad_valorem_and_gris(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "insured", [tier_row(*SP, 0, 30, 20.0, 3)],
                  ad_valorem_percentage=1.0, gris_percentage=0.5)

        quote = run_quote(quoter, "01310100", 2, merchandise_value=1000)

        assert quote.ad_valorem_value == 10.0
        assert quote.gris_value == 5.0
        assert quote.economic_price == 35.0
        assert quote.express_price == 56.0

    def test_excess_weight_uses_heaviest_tier(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "excess", [
            tier_row(*SP, 0, 5, 20.0, 3),
            tier_row(*SP, 5, 10, 30.0, 3),
        ], excess_weight_threshold_kg=10, excess_weight_charge_per_kg=2.5)

        quote = run_quote(quoter, "01310100", 12)

        assert quote.table_id == "excess"
        assert quote.excess_weight_charge == 5.0
        assert quote.economic_price == 35.0

    def test_oversized_parcel_skips_table(self, quoter, registry, fetcher):
        add_table(registry, fetcher, "small_only", [tier_row(*SP, 0, 30, 5.0, 3)], max_length_cm=40)
        add_table(registry, fetcher, "any_size", [tier_row(*SP, 0, 30, 25.0, 3)])

        quote = run_quote(quoter, "01310100", 2, length_cm=50, width_cm=20, height_cm=10)

        assert quote.table_id == "any_size"
