"""
Rate Resolution Engine - Error Taxonomy

Only WeightExceeded, InvalidDestination, InvalidQuoteRequest and NoCoverage
cross the public quote() boundary. The remaining errors are raised by the
individual components and absorbed by the Multi-Source Quoter.
"""

from typing import Any, Dict, List, Optional, Tuple

WeightRange = Tuple[float, float]


class RateEngineError(Exception):
    """Base exception for all rate engine errors."""
    pass


# ---------------------------------------------------------------------------
# Public, user-correctable errors
# ---------------------------------------------------------------------------
class WeightExceeded(RateEngineError):
    """Raised when the parcel weight is above the business ceiling."""

    def __init__(self, weight: float, max_weight: float):
        self.weight = weight
        self.max_weight = max_weight
        super().__init__(f"Weight {weight}kg exceeds the maximum of {max_weight}kg")


class InvalidDestination(RateEngineError):
    """Raised when the destination postal code fails shape validation."""

    def __init__(self, postal_code: Any):
        self.postal_code = postal_code
        super().__init__(f"Invalid destination postal code: {postal_code!r}")


class InvalidQuoteRequest(RateEngineError):
    """Raised for non-positive weights, quantities or dimensions."""
    pass


class NoCoverage(RateEngineError):
    """
    Raised when no source, the builtin one included, can price the request.

    Carries enough diagnostic detail (zone, available weight ranges) for a
    human to decide between contacting support and correcting the input.
    """

    POSTAL_CODE_NOT_COVERED = "postal_code_not_covered"
    WEIGHT_NOT_CONFIGURED = "weight_not_configured"

    def __init__(
        self,
        reason: str,
        postal_code: str,
        weight: float,
        zone: Optional[str] = None,
        zone_name: Optional[str] = None,
        available_ranges: Optional[List[WeightRange]] = None,
    ):
        self.reason = reason
        self.postal_code = postal_code
        self.weight = weight
        self.zone = zone
        self.zone_name = zone_name
        self.available_ranges = list(available_ranges or [])
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        if self.reason == self.POSTAL_CODE_NOT_COVERED:
            return f"Postal code {self.postal_code} is not covered by any pricing table"

        ranges = ", ".join(f"{lo:g}-{hi:g}kg" for lo, hi in self.available_ranges) or "none"
        zone = self.zone_name or self.zone or "unknown zone"
        return (
            f"No price configured for {self.weight:g}kg in {zone}. "
            f"Available weight ranges: {ranges}"
        )

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": "NoCoverage",
            "reason": self.reason,
            "message": str(self),
            "postal_code": self.postal_code,
            "weight": self.weight,
            "zone": self.zone,
            "zone_name": self.zone_name,
            "available_ranges": [list(r) for r in self.available_ranges],
        }


# ---------------------------------------------------------------------------
# Internal, per-source errors
# ---------------------------------------------------------------------------
class SourceUnavailable(RateEngineError):
    """I/O failure, timeout or corrupt content while reading one pricing source."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Pricing source unavailable ({location}): {reason}")


class ReferenceDataError(RateEngineError):
    """Exception raised when builtin reference data cannot be loaded or is invalid."""
    pass


class RateLookupError(RateEngineError):
    """Base class for lookups that legitimately find nothing."""
    pass


class ZoneNotCovered(RateLookupError):
    """No zone or coverage row contains the postal code."""

    def __init__(self, postal_code: str):
        self.postal_code = postal_code
        super().__init__(f"Postal code {postal_code} is not covered")


class TierNotFound(RateLookupError):
    """The postal code resolved, but no tier contains the weight."""

    def __init__(
        self,
        postal_code: str,
        weight: float,
        zone: Optional[str] = None,
        available_ranges: Optional[List[WeightRange]] = None,
    ):
        self.postal_code = postal_code
        self.weight = weight
        self.zone = zone
        self.available_ranges = list(available_ranges or [])
        super().__init__(f"No tier for {weight}kg at {postal_code} (zone {zone or 'n/a'})")


class AmbiguousTier(RateLookupError):
    """Several tiers match and strict matching is enabled."""

    def __init__(self, postal_code: str, weight: float, matches: int):
        self.postal_code = postal_code
        self.weight = weight
        self.matches = matches
        super().__init__(f"{matches} tiers match {weight}kg at {postal_code}")


class UnknownTable(RateEngineError):
    """Raised when a table id is not in the registry."""

    def __init__(self, table_id: str):
        self.table_id = table_id
        super().__init__(f"Pricing table {table_id} not found")
