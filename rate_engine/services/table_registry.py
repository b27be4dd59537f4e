"""Pricing table registries: where the engine reads its active sources from."""
from __future__ import annotations

import copy
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from rate_engine.schemas.models import PricingTable, ValidationIssue, ValidationStatus


class TableRegistry:
    """Registry interface consumed by the engine."""

    def list_active_pricing_tables(self) -> List[PricingTable]:
        """Active tables whose last validation passed, in registration order."""
        return [
            table for table in self.list_tables()
            if table.is_active and table.validation_status == "valid"
        ]

    def list_tables(self) -> List[PricingTable]:
        raise NotImplementedError

    def get_table(self, table_id: str) -> Optional[PricingTable]:
        raise NotImplementedError

    def register(self, table: PricingTable) -> PricingTable:
        raise NotImplementedError

    def update_validation(
        self,
        table_id: str,
        status: ValidationStatus,
        issues: List[ValidationIssue],
        validated_at: Optional[datetime] = None,
    ) -> PricingTable:
        raise NotImplementedError


class InMemoryTableRegistry(TableRegistry):
    """Process-local registry; hands out copies so readers never see partial writes."""

    def __init__(self, tables: Optional[List[PricingTable]] = None):
        self._tables: Dict[str, PricingTable] = {}
        self._lock = threading.Lock()
        for table in tables or []:
            self.register(table)

    def list_tables(self) -> List[PricingTable]:
        with self._lock:
            tables = [t.model_copy(deep=True) for t in self._tables.values()]
        return sorted(tables, key=lambda t: t.registration_order)

    def get_table(self, table_id: str) -> Optional[PricingTable]:
        with self._lock:
            table = self._tables.get(table_id)
            return table.model_copy(deep=True) if table else None

    def register(self, table: PricingTable) -> PricingTable:
        with self._lock:
            stored = table.model_copy(deep=True)
            existing = self._tables.get(table.id)
            if existing is not None:
                stored.registration_order = existing.registration_order
            else:
                stored.registration_order = len(self._tables) + 1
            self._tables[table.id] = stored
            return stored.model_copy(deep=True)

    def update_validation(
        self,
        table_id: str,
        status: ValidationStatus,
        issues: List[ValidationIssue],
        validated_at: Optional[datetime] = None,
    ) -> PricingTable:
        with self._lock:
            table = self._tables.get(table_id)
            if table is None:
                raise KeyError(f"Pricing table {table_id} not found")
            updated = table.model_copy(update={
                "validation_status": status,
                "validation_issues": copy.deepcopy(list(issues)),
                "last_validated_at": validated_at or datetime.utcnow(),
            })
            self._tables[table_id] = updated
            return updated.model_copy(deep=True)


class JsonTableRegistry(TableRegistry):
    """Store pricing tables as one JSON file each."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_tables(self) -> List[PricingTable]:
        tables = []
        for path in self.base_dir.glob("*.json"):
            data = json.loads(path.read_text(encoding="utf-8"))
            tables.append(PricingTable.model_validate(data))
        return sorted(tables, key=lambda t: t.registration_order)

    def get_table(self, table_id: str) -> Optional[PricingTable]:
        path = self._table_path(table_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        return PricingTable.model_validate(data)

    def register(self, table: PricingTable) -> PricingTable:
        # Order is assigned and written under one lock; always global before per-table
        table_lock = self._lock_for_table(table.id)
        with self._global_lock, table_lock:
            existing = self.get_table(table.id)
            stored = table.model_copy(deep=True)
            if existing is not None:
                stored.registration_order = existing.registration_order
            else:
                orders = [t.registration_order for t in self.list_tables()]
                stored.registration_order = max(orders, default=0) + 1
            self._write_table(stored)
        return stored

    def update_validation(
        self,
        table_id: str,
        status: ValidationStatus,
        issues: List[ValidationIssue],
        validated_at: Optional[datetime] = None,
    ) -> PricingTable:
        with self._lock_for_table(table_id):
            table = self.get_table(table_id)
            if table is None:
                raise KeyError(f"Pricing table {table_id} not found")
            table.validation_status = status
            table.validation_issues = list(issues)
            table.last_validated_at = validated_at or datetime.utcnow()
            self._write_table(table)
            return table

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _table_path(self, table_id: str) -> Path:
        return self.base_dir / f"{table_id}.json"

    def _write_table(self, table: PricingTable) -> None:
        payload = table.model_dump(mode="json")
        path = self._table_path(table.id)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    def _lock_for_table(self, table_id: str) -> threading.Lock:
        with self._global_lock:
            lock = self._locks.get(table_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[table_id] = lock
            return lock
