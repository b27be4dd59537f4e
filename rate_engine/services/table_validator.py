"""
Rate Resolution Engine - Table Validator

Audits a normalized pricing source for structural integrity: required
columns, malformed cells, and weight-range continuity per zone group
(INVALID_RANGE, GAP, OVERLAP), plus zones of the directory the table never
mentions (MISSING_ZONE). Validation is read-only; rows are never changed.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

import pandas as pd

from rate_engine.core.config import settings
from rate_engine.schemas.models import (
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
    Zone,
)
from rate_engine.services.sources import JoinedSheetSource, NormalizedSource

logger = logging.getLogger('rate_engine.table_validator')

RowKey = Tuple[Optional[str], Optional[int]]


def _row_no(value) -> Optional[int]:
    return None if value is None or pd.isna(value) else int(value)


def _fmt(value: float) -> str:
    return f"{value:g}"


class TableValidator:
    """Shape and range checks for one pricing source."""

    def __init__(
        self,
        weight_floor: Optional[float] = None,
        weight_ceiling: Optional[float] = None,
        epsilon: Optional[float] = None,
        check_zone_completeness: Optional[bool] = None,
    ):
        self.weight_floor = settings.VALIDATION_WEIGHT_FLOOR_KG if weight_floor is None else weight_floor
        self.weight_ceiling = settings.VALIDATION_WEIGHT_CEILING_KG if weight_ceiling is None else weight_ceiling
        self.epsilon = settings.VALIDATION_EPSILON if epsilon is None else epsilon
        self.check_zone_completeness = (
            settings.VALIDATE_ZONE_COMPLETENESS if check_zone_completeness is None else check_zone_completeness
        )

    def validate(
        self,
        source: NormalizedSource,
        zones: Optional[Iterable[Zone]] = None,
        table_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Audit a source.

        Args:
            source: Normalized source as produced by the sheet adapter
            zones: Zone directory entries every table is expected to cover
            table_id: Echoed on the result

        Returns:
            ValidationResult: valid iff no issue of any kind was found
        """
        issues: List[ValidationIssue] = []
        bad_rows: Set[RowKey] = set()

        issues.extend(self._column_issues(source))

        if isinstance(source, JoinedSheetSource):
            issues.extend(self._postal_issues(source.coverage, source, bad_rows))
            issues.extend(self._value_issues(
                source.coverage, source, bad_rows, (), ("lead_time_days", "express_lead_time_days")
            ))
            issues.extend(self._value_issues(
                source.prices, source, bad_rows, ("price",), ("lead_time_days", "express_price", "express_lead_time_days")
            ))
            issues.extend(self._weight_value_issues(source.prices, source, bad_rows))
            groups = self._label_groups(source.prices)
        else:
            issues.extend(self._postal_issues(source.rows, source, bad_rows))
            issues.extend(self._value_issues(
                source.rows, source, bad_rows, ("price", "lead_time_days"), ("express_price", "express_lead_time_days")
            ))
            issues.extend(self._weight_value_issues(source.rows, source, bad_rows))
            groups = self._single_groups(source.rows)

        for group, rows in groups:
            issues.extend(self._range_issues(group, rows, bad_rows))

        missing_zones: List[str] = []
        if zones is not None and self.check_zone_completeness:
            missing_zones = self._missing_zones(source, list(zones))
            for code in missing_zones:
                issues.append(ValidationIssue(
                    type="MISSING_ZONE",
                    description=f"No pricing rows for zone {code}",
                    group=code,
                ))

        total = source.total_rows
        invalid = len(bad_rows)
        result = ValidationResult(
            table_id=table_id,
            is_valid=not issues,
            issues=issues,
            summary=ValidationSummary(
                total_rows=total,
                valid_rows=max(total - invalid, 0),
                invalid_rows=invalid,
                missing_zones=missing_zones,
            ),
        )
        if result.is_valid:
            logger.info(f"Table {table_id or ''} is valid ({total} rows)")
        else:
            logger.warning(f"Table {table_id or ''} has {len(issues)} issues across {invalid} rows")
        return result

    # ------------------------------------------------------------------
    # Shape checks
    # ------------------------------------------------------------------
    @staticmethod
    def _column_issues(source: NormalizedSource) -> List[ValidationIssue]:
        issues = []
        for sheet, fields in source.missing_columns.items():
            for name in fields:
                issues.append(ValidationIssue(
                    type="MISSING_COLUMN",
                    description=f"Sheet '{sheet}' has no column for {name}",
                    sheet=sheet,
                    field=name,
                ))
        return issues

    @staticmethod
    def _postal_issues(rows: pd.DataFrame, source: NormalizedSource, bad_rows: Set[RowKey]) -> List[ValidationIssue]:
        issues = []
        for _, row in rows.iterrows():
            key = (row["sheet"], _row_no(row["row_index"]))
            values = {}
            for name in ("postal_start", "postal_end"):
                if not source.has_column(row["sheet"], name):
                    continue
                value = row[name]
                digits = "" if value is None or pd.isna(value) else str(value)
                if not digits or len(digits) > 8:
                    issues.append(ValidationIssue(
                        type="INVALID_POSTAL_CODE",
                        description=f"Row {row['row_index']} of '{row['sheet']}': {name} must have 8 digits",
                        sheet=row["sheet"],
                        row_index=_row_no(row["row_index"]),
                        field=name,
                        value=value if digits else None,
                    ))
                    bad_rows.add(key)
                else:
                    values[name] = digits.zfill(8)

            if len(values) == 2 and values["postal_start"] > values["postal_end"]:
                issues.append(ValidationIssue(
                    type="INVALID_RANGE",
                    description=(
                        f"Row {row['row_index']} of '{row['sheet']}': postal range "
                        f"{values['postal_start']}-{values['postal_end']} starts after it ends"
                    ),
                    sheet=row["sheet"],
                    row_index=_row_no(row["row_index"]),
                    field="postal_start",
                    value=values["postal_start"],
                ))
                bad_rows.add(key)
        return issues

    @staticmethod
    def _value_issues(
        rows: pd.DataFrame,
        source: NormalizedSource,
        bad_rows: Set[RowKey],
        required: Tuple[str, ...],
        optional: Tuple[str, ...] = (),
    ) -> List[ValidationIssue]:
        """Price and lead time must be numeric and positive; optional fields may be blank."""
        issues = []
        for _, row in rows.iterrows():
            for name in required + optional:
                if not source.has_column(row["sheet"], name):
                    continue
                value = row[name]
                if pd.isna(value) and name in optional:
                    continue
                if pd.isna(value) or value <= 0:
                    issues.append(ValidationIssue(
                        type="INVALID_VALUE",
                        description=(
                            f"Row {row['row_index']} of '{row['sheet']}': {name} must be a positive number"
                        ),
                        sheet=row["sheet"],
                        row_index=_row_no(row["row_index"]),
                        field=name,
                        value=None if pd.isna(value) else float(value),
                    ))
                    bad_rows.add((row["sheet"], _row_no(row["row_index"])))
        return issues

    @staticmethod
    def _weight_value_issues(rows: pd.DataFrame, source: NormalizedSource, bad_rows: Set[RowKey]) -> List[ValidationIssue]:
        issues = []
        for _, row in rows.iterrows():
            for name in ("weight_min", "weight_max"):
                if not source.has_column(row["sheet"], name):
                    continue
                value = row[name]
                if pd.isna(value) or value < 0:
                    issues.append(ValidationIssue(
                        type="INVALID_VALUE",
                        description=(
                            f"Row {row['row_index']} of '{row['sheet']}': {name} must be a non-negative number"
                        ),
                        sheet=row["sheet"],
                        row_index=_row_no(row["row_index"]),
                        field=name,
                        value=None if pd.isna(value) else float(value),
                    ))
                    bad_rows.add((row["sheet"], _row_no(row["row_index"])))
        return issues

    # ------------------------------------------------------------------
    # Range checks
    # ------------------------------------------------------------------
    @staticmethod
    def _weighted(rows: pd.DataFrame) -> pd.DataFrame:
        if rows.empty:
            return rows
        return rows[rows["weight_min"].notna() & rows["weight_max"].notna()]

    def _single_groups(self, rows: pd.DataFrame) -> List[Tuple[str, pd.DataFrame]]:
        """Group by padded postal range, prefixed with the zone label when present."""
        rows = self._weighted(rows)
        if rows.empty:
            return []
        keys = []
        for _, row in rows.iterrows():
            start = "" if pd.isna(row["postal_start"]) else str(row["postal_start"]).zfill(8)
            end = "" if pd.isna(row["postal_end"]) else str(row["postal_end"]).zfill(8)
            label = row["zone_label"]
            if isinstance(label, str) and label:
                keys.append(f"{label} {start}-{end}")
            else:
                keys.append(f"{start}-{end}")
        return [(group, frame) for group, frame in rows.groupby(pd.Series(keys, index=rows.index), sort=False)]

    def _label_groups(self, rows: pd.DataFrame) -> List[Tuple[str, pd.DataFrame]]:
        rows = self._weighted(rows)
        if rows.empty:
            return []
        return [(str(group), frame) for group, frame in rows.groupby("zone_label", sort=False)]

    def _range_issues(self, group: str, rows: pd.DataFrame, bad_rows: Set[RowKey]) -> List[ValidationIssue]:
        issues = []
        eps = self.epsilon
        ordered = rows.sort_values("weight_min", kind="stable")
        records = list(ordered.to_dict("records"))

        for rec in records:
            if rec["weight_min"] >= rec["weight_max"]:
                issues.append(ValidationIssue(
                    type="INVALID_RANGE",
                    description=(
                        f"{group}: weight_min ({_fmt(rec['weight_min'])}kg) >= "
                        f"weight_max ({_fmt(rec['weight_max'])}kg)"
                    ),
                    group=group,
                    sheet=rec["sheet"],
                    row_index=_row_no(rec["row_index"]),
                    weight_min=rec["weight_min"],
                    weight_max=rec["weight_max"],
                ))
                bad_rows.add((rec["sheet"], _row_no(rec["row_index"])))

        first = records[0]
        if first["weight_min"] > self.weight_floor + eps:
            issues.append(ValidationIssue(
                type="GAP",
                description=(
                    f"{group}: gap at start, missing {_fmt(self.weight_floor)}kg to {_fmt(first['weight_min'])}kg"
                ),
                group=group,
                sheet=first["sheet"],
                row_index=_row_no(first["row_index"]),
                weight_min=self.weight_floor,
                weight_max=first["weight_min"],
            ))

        for current, nxt in zip(records, records[1:]):
            if nxt["weight_min"] > current["weight_max"] + eps:
                issues.append(ValidationIssue(
                    type="GAP",
                    description=(
                        f"{group}: gap between {_fmt(current['weight_max'])}kg and {_fmt(nxt['weight_min'])}kg"
                    ),
                    group=group,
                    sheet=nxt["sheet"],
                    row_index=_row_no(nxt["row_index"]),
                    weight_min=current["weight_max"],
                    weight_max=nxt["weight_min"],
                ))
            if nxt["weight_min"] < current["weight_max"]:
                issues.append(ValidationIssue(
                    type="OVERLAP",
                    description=(
                        f"{group}: overlapping tiers {_fmt(current['weight_min'])}-{_fmt(current['weight_max'])}kg "
                        f"and {_fmt(nxt['weight_min'])}-{_fmt(nxt['weight_max'])}kg"
                    ),
                    group=group,
                    sheet=nxt["sheet"],
                    row_index=_row_no(nxt["row_index"]),
                    weight_min=max(current["weight_min"], nxt["weight_min"]),
                    weight_max=min(current["weight_max"], nxt["weight_max"]),
                ))

        last = records[-1]
        if last["weight_max"] < self.weight_ceiling - eps:
            issues.append(ValidationIssue(
                type="GAP",
                description=(
                    f"{group}: gap at end, missing {_fmt(last['weight_max'])}kg to {_fmt(self.weight_ceiling)}kg"
                ),
                group=group,
                sheet=last["sheet"],
                row_index=_row_no(last["row_index"]),
                weight_min=last["weight_max"],
                weight_max=self.weight_ceiling,
            ))
        return issues

    # ------------------------------------------------------------------
    # Zone completeness
    # ------------------------------------------------------------------
    @staticmethod
    def _missing_zones(source: NormalizedSource, zones: List[Zone]) -> List[str]:
        """Zones with neither a matching label nor an intersecting postal range."""
        if isinstance(source, JoinedSheetSource):
            ranged = source.usable_coverage()
            labelled = source.prices
        else:
            ranged = source.usable_rows()
            labelled = source.rows

        labels = {
            str(label).strip().lower()
            for label in labelled["zone_label"].dropna()
        } if not labelled.empty else set()
        ranges = list(zip(ranged["postal_start"], ranged["postal_end"])) if not ranged.empty else []

        missing = []
        for zone in zones:
            if zone.zone_code.lower() in labels:
                continue
            if any(start <= zone.postal_end and end >= zone.postal_start for start, end in ranges):
                continue
            missing.append(zone.zone_code)
        return missing
