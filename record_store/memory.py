"""In-memory record store with the same surface as RecordStoreClient.

Used by the `memory` transport (local runs without a hosted store) and by tests.
Change events are delivered synchronously to subscribers after the write.
"""

import itertools
import logging
import threading
from copy import deepcopy
from datetime import datetime, timezone

from record_store.client import RecordNotFoundError
from runtime.parsing import finite_float


def _comparable(left, right):
    left_num = finite_float(left)
    right_num = finite_float(right)
    if left_num is not None and right_num is not None:
        return left_num, right_num
    return ("" if left is None else str(left)), ("" if right is None else str(right))


def _term_matches(record_value, value):
    if isinstance(value, tuple) and len(value) == 3 and value[0] == "between":
        return _term_matches(record_value, (">=", value[1])) and _term_matches(record_value, ("<=", value[2]))
    if isinstance(value, tuple) and len(value) == 2:
        operator, operand = value
        if operator == "~":
            return str(operand).lower() in str(record_value or "").lower()
        if record_value is None and operator not in {"=", "!="}:
            return False
        left, right = _comparable(record_value, operand)
        if operator == "=":
            return left == right
        if operator == "!=":
            return left != right
        if operator == ">":
            return left > right
        if operator == ">=":
            return left >= right
        if operator == "<":
            return left < right
        if operator == "<=":
            return left <= right
        raise ValueError(f"Unsupported filter operator '{operator}'.")
    if isinstance(value, (list, set, frozenset)):
        return any(_term_matches(record_value, item) for item in value)
    if value is None:
        return record_value is None
    left, right = _comparable(record_value, value)
    return left == right


def record_matches(record, filters):
    """Evaluate a filter dict (see build_filter_expression) against one record."""
    for field, value in (filters or {}).items():
        if not _term_matches(record.get(field), value):
            return False
    return True


def _sort_records(records, sort):
    if not sort:
        return records
    ordered = list(records)
    for key in reversed([part.strip() for part in str(sort).split(",") if part.strip()]):
        descending = key.startswith("-")
        field = key.lstrip("+-")
        ordered.sort(key=lambda rec: ("" if rec.get(field) is None else str(rec.get(field))), reverse=descending)
    return ordered


class InMemoryRecordStore:
    """Thread-safe dict-backed record store."""

    def __init__(self, collections=None):
        self._lock = threading.Lock()
        self._collections = {}
        self._subscribers = {}
        self._ids = itertools.count(1)
        for name, records in (collections or {}).items():
            for record in records:
                self._insert(name, dict(record))

    def _now(self):
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%fZ")

    def _insert(self, collection, fields):
        record = dict(fields)
        record.setdefault("id", f"rec{next(self._ids):012d}")
        record.setdefault("created", self._now())
        record.setdefault("updated", record["created"])
        self._collections.setdefault(collection, {})[record["id"]] = record
        return record

    def _notify(self, collection, action, record):
        handlers = list(self._subscribers.get(collection, []))
        for handler in handlers:
            try:
                handler({"action": action, "record": deepcopy(record)})
            except Exception as exc:
                logging.error("Memory store: change handler for '%s' failed: %s", collection, exc)

    def query(self, collection, filters=None, sort=None):
        with self._lock:
            records = [
                deepcopy(record)
                for record in self._collections.get(collection, {}).values()
                if record_matches(record, filters)
            ]
        return _sort_records(records, sort)

    def list_page(self, collection, page=1, per_page=50, filters=None, sort=None, fields=None):
        records = self.query(collection, filters=filters, sort=sort)
        per_page = max(1, int(per_page))
        total_items = len(records)
        total_pages = (total_items + per_page - 1) // per_page
        start = (max(1, int(page)) - 1) * per_page
        items = records[start:start + per_page]
        if fields:
            keep = [name.strip() for name in str(fields).split(",") if name.strip()]
            items = [{name: item.get(name) for name in keep} for item in items]
        return {
            "items": items,
            "page": int(page),
            "per_page": per_page,
            "total_items": total_items,
            "total_pages": total_pages,
        }

    def get_one(self, collection, record_id):
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                raise RecordNotFoundError(f"Record '{record_id}' not found in '{collection}'.")
            return deepcopy(record)

    def create(self, collection, fields):
        with self._lock:
            record = self._insert(collection, fields)
            created = deepcopy(record)
        self._notify(collection, "create", created)
        return created

    def update(self, collection, record_id, fields):
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                raise RecordNotFoundError(f"Record '{record_id}' not found in '{collection}'.")
            record.update(dict(fields))
            record["updated"] = self._now()
            updated = deepcopy(record)
        self._notify(collection, "update", updated)
        return updated

    def delete(self, collection, record_id):
        with self._lock:
            record = self._collections.get(collection, {}).pop(record_id, None)
            if record is None:
                raise RecordNotFoundError(f"Record '{record_id}' not found in '{collection}'.")
        self._notify(collection, "delete", record)

    def subscribe_to_changes(self, collection, handler):
        with self._lock:
            self._subscribers.setdefault(collection, []).append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._subscribers.get(collection, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe
