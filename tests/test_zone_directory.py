"""
Unit Tests for the Zone Directory and the builtin rate store.

Run with: pytest tests/test_zone_directory.py -v
"""

import pandas as pd
import pytest

from rate_engine.core.exceptions import ReferenceDataError, ZoneNotCovered
from rate_engine.schemas.models import Zone, normalize_postal_code
from rate_engine.services.builtin_store import BuiltinRateStore
from rate_engine.services.sources import JoinedSheetSource
from rate_engine.services.zone_directory import ZoneDirectory


# =============================================================================
# POSTAL CODE NORMALIZATION
# =============================================================================

class TestNormalizePostalCode:

    def test_strips_mask(self):
        assert normalize_postal_code("74000-000") == "74000000"

    def test_pads_lost_leading_zero(self):
        assert normalize_postal_code(1310100) == "01310100"

    def test_float_cell(self):
        assert normalize_postal_code(1310100.0) == "01310100"

    def test_empty_values(self):
        assert normalize_postal_code(None) == ""
        assert normalize_postal_code(float("nan")) == ""
        assert normalize_postal_code("abc") == ""


# =============================================================================
# ZONE DIRECTORY
# =============================================================================

class TestZoneDirectory:

    def test_resolves_zone(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        zone = directory.resolve_zone("74000-000")
        assert zone.zone_code == "GOCAP.01"
        assert zone.delivery_days == 4

    def test_range_bounds_are_inclusive(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        assert directory.resolve_zone("05999999").zone_code == "SPCAP.01"
        assert directory.resolve_zone("01000000").zone_code == "SPCAP.01"

    def test_short_code_is_padded(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        assert directory.resolve_zone("1310100").zone_code == "SPCAP.01"

    def test_uncovered_code_raises(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        with pytest.raises(ZoneNotCovered):
            directory.resolve_zone("69000000")
        assert directory.find_zone("06000000") is None

    def test_zones_are_sorted(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame.iloc[::-1])
        assert [z.zone_code for z in directory.zones] == ["SPCAP.01", "GOCAP.01", "RSINT.01"]

    def test_overlapping_ranges_rejected(self):
        zones = [
            Zone(zone_code="A", state="SP", postal_start="01000000", postal_end="02000000"),
            Zone(zone_code="B", state="SP", postal_start="01500000", postal_end="03000000"),
        ]
        with pytest.raises(ReferenceDataError):
            ZoneDirectory(zones)

    def test_get_is_case_insensitive(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        assert directory.get("gocap.01").state == "GO"
        assert directory.get("XX.99") is None

    def test_zone_name(self, zones_frame):
        directory = ZoneDirectory.from_frame(zones_frame)
        assert directory.get("GOCAP.01").name == "GO - capital (GOCAP.01)"


# =============================================================================
# BUILTIN STORE
# =============================================================================

class TestBuiltinRateStore:

    def test_zones_covering(self, builtin_store):
        rows = builtin_store.zones_covering("74123-456")
        assert list(rows["zone_code"]) == ["GOCAP.01"]

    def test_tiers_for_zone_sorted(self, builtin_store):
        tiers = builtin_store.tiers_for_zone("spcap.01")
        assert list(tiers["weight_min"]) == [0, 10]

    def test_as_source_is_joined(self, builtin_store):
        source = builtin_store.as_source()
        assert isinstance(source, JoinedSheetSource)
        assert len(source.usable_coverage()) == 3
        assert len(source.usable_prices()) == 5

    def test_missing_columns_rejected(self, zones_frame):
        with pytest.raises(ReferenceDataError):
            BuiltinRateStore(zones_frame, pd.DataFrame({"zone_code": ["SPCAP.01"]}))

    def test_packaged_reference_data(self):
        store = BuiltinRateStore.from_directory()
        directory = store.zone_directory()
        assert len(directory) == 15
        assert directory.resolve_zone("74000000").zone_code == "GOCAP.01"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ReferenceDataError):
            BuiltinRateStore.from_directory(tmp_path)
