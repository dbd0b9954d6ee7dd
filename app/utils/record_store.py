"""Generic record store used by every service.

Records are plain dicts keyed by an integer ``id``. Filters use the subset of
MongoDB query syntax listed in ``_COMPARATORS`` plus ``$ne``, ``$in``,
``$nin``, ``$exists``, ``$regex``/``$options``, ``$or`` and ``$and``, so the
same service code runs against :class:`MongoRecordStore` in production and
:class:`MemoryRecordStore` in tests or single-process deployments.
"""

import copy
import operator
import re
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

Where = Dict[str, Any]
OrderBy = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

# collection -> [(key fields, partial filter or None)]
UNIQUE_INDEXES: Dict[str, List[Tuple[Tuple[str, ...], Optional[Where]]]] = {
    "conversations": [(("provider_id", "consumer_id"), None)],
    # An offer gets at most one ACCEPT or DECLINE
    "messages": [(("answers_offer_id",), {"answers_offer_id": {"$exists": True}})],
    "providers": [(("contact_no",), {"is_active": True})],
}


class DuplicateRecordError(Exception):
    """Raised when a write would violate one of UNIQUE_INDEXES."""


class RecordStore(ABC):
    @abstractmethod
    async def find_unique(self, collection: str, record_id: int) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def find_first(
        self, collection: str, where: Optional[Where] = None, order_by: Optional[OrderBy] = None
    ) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def find_many(
        self,
        collection: str,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: int,
        data: Optional[Dict[str, Any]] = None,
        *,
        where: Optional[Where] = None,
        inc: Optional[Dict[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Apply ``data``/``inc`` to one record.

        When ``where`` is given the write only happens if the record still
        matches it (compare-and-set). Returns the updated record, or ``None``
        if the record is missing or no longer matches.
        """

    @abstractmethod
    async def update_many(self, collection: str, where: Where, data: Dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def delete_many(self, collection: str, where: Where) -> int:
        ...

    @abstractmethod
    async def count(self, collection: str, where: Optional[Where] = None) -> int:
        ...

    @abstractmethod
    async def group_by(self, collection: str, field: str, where: Optional[Where] = None) -> List[Dict[str, Any]]:
        """Return ``[{field: value, "count": n}, ...]`` sorted by value."""

    @abstractmethod
    async def distinct(self, collection: str, field: str, where: Optional[Where] = None) -> List[Any]:
        ...

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None


_MISSING = object()

_COMPARATORS = {
    "$lt": operator.lt,
    "$lte": operator.le,
    "$gt": operator.gt,
    "$gte": operator.ge,
}


def _resolve(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _equals(value: Any, expected: Any) -> bool:
    # Mongo semantics: {"field": None} matches both null and missing fields
    if expected is None:
        return value is _MISSING or value is None
    return value is not _MISSING and value == expected


def _is_operator_dict(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(str(k).startswith("$") for k in cond)


def _match_operators(value: Any, ops: Dict[str, Any]) -> bool:
    for op, arg in ops.items():
        if op == "$options":
            continue
        if op == "$ne":
            if _equals(value, arg):
                return False
        elif op == "$in":
            if not any(_equals(value, candidate) for candidate in arg):
                return False
        elif op == "$nin":
            if any(_equals(value, candidate) for candidate in arg):
                return False
        elif op == "$exists":
            if (value is not _MISSING) != bool(arg):
                return False
        elif op == "$regex":
            if not isinstance(value, str):
                return False
            flags = re.IGNORECASE if "i" in ops.get("$options", "") else 0
            if not re.search(arg, value, flags):
                return False
        elif op in _COMPARATORS:
            if value is _MISSING or value is None or arg is None:
                return False
            try:
                if not _COMPARATORS[op](value, arg):
                    return False
            except TypeError:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


def matches(doc: Dict[str, Any], where: Optional[Where]) -> bool:
    for key, cond in (where or {}).items():
        if key == "$or":
            if not any(matches(doc, clause) for clause in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, clause) for clause in cond):
                return False
        elif _is_operator_dict(cond):
            if not _match_operators(_resolve(doc, key), cond):
                return False
        elif not _equals(_resolve(doc, key), cond):
            return False
    return True


def sort_records(docs: List[Dict[str, Any]], order_by: Optional[OrderBy]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; null/missing values sort lowest, as in Mongo."""
    ordered = list(docs)
    for field, direction in reversed(list(order_by or [])):
        present = [d for d in ordered if _resolve(d, field) not in (None, _MISSING)]
        absent = [d for d in ordered if _resolve(d, field) in (None, _MISSING)]
        present.sort(key=lambda d: _resolve(d, field), reverse=direction < 0)
        ordered = absent + present if direction >= 0 else present + absent
    return ordered


class MemoryRecordStore(RecordStore):
    """Dict-backed store for tests and single-process deployments.

    Every method runs to completion without awaiting, so each call is atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self, unique_indexes: Optional[Dict[str, List[Tuple[Tuple[str, ...], Optional[Where]]]]] = None) -> None:
        self._collections: Dict[str, Dict[int, Dict[str, Any]]] = defaultdict(dict)
        self._sequences: Dict[str, int] = defaultdict(int)
        self._unique_indexes = UNIQUE_INDEXES if unique_indexes is None else unique_indexes

    def _check_unique(self, collection: str, record: Dict[str, Any]) -> None:
        for fields, partial in self._unique_indexes.get(collection, []):
            if partial and not matches(record, partial):
                continue
            key = tuple(record.get(f) for f in fields)
            for other in self._collections[collection].values():
                if other["id"] == record["id"]:
                    continue
                if partial and not matches(other, partial):
                    continue
                if tuple(other.get(f) for f in fields) == key:
                    raise DuplicateRecordError(
                        f"Duplicate {collection} record for {dict(zip(fields, key))}"
                    )

    def _select(self, collection: str, where: Optional[Where]) -> List[Dict[str, Any]]:
        return [doc for doc in self._collections[collection].values() if matches(doc, where)]

    async def find_unique(self, collection: str, record_id: int) -> Optional[Dict[str, Any]]:
        doc = self._collections[collection].get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_first(
        self, collection: str, where: Optional[Where] = None, order_by: Optional[OrderBy] = None
    ) -> Optional[Dict[str, Any]]:
        docs = await self.find_many(collection, where, order_by, limit=1)
        return docs[0] if docs else None

    async def find_many(
        self,
        collection: str,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        docs = sort_records(self._select(collection, where), order_by or [("id", ASCENDING)])
        docs = docs[skip:]
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def create(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(data)
        self._sequences[collection] += 1
        record["id"] = self._sequences[collection]
        self._check_unique(collection, record)
        self._collections[collection][record["id"]] = record
        return copy.deepcopy(record)

    async def update(
        self,
        collection: str,
        record_id: int,
        data: Optional[Dict[str, Any]] = None,
        *,
        where: Optional[Where] = None,
        inc: Optional[Dict[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        current = self._collections[collection].get(record_id)
        if current is None or (where and not matches(current, where)):
            return None
        updated = copy.deepcopy(current)
        updated.update(copy.deepcopy(data or {}))
        for field, amount in (inc or {}).items():
            updated[field] = (updated.get(field) or 0) + amount
        updated["id"] = record_id
        self._check_unique(collection, updated)
        self._collections[collection][record_id] = updated
        return copy.deepcopy(updated)

    async def update_many(self, collection: str, where: Where, data: Dict[str, Any]) -> int:
        targets = self._select(collection, where)
        for doc in targets:
            doc.update(copy.deepcopy(data))
        return len(targets)

    async def delete_many(self, collection: str, where: Where) -> int:
        targets = self._select(collection, where)
        for doc in targets:
            del self._collections[collection][doc["id"]]
        return len(targets)

    async def count(self, collection: str, where: Optional[Where] = None) -> int:
        return len(self._select(collection, where))

    async def group_by(self, collection: str, field: str, where: Optional[Where] = None) -> List[Dict[str, Any]]:
        counts: Dict[Any, int] = defaultdict(int)
        for doc in self._select(collection, where):
            value = _resolve(doc, field)
            counts[None if value is _MISSING else value] += 1
        rows = [{field: value, "count": n} for value, n in counts.items()]
        return sort_records(rows, [(field, ASCENDING)])

    async def distinct(self, collection: str, field: str, where: Optional[Where] = None) -> List[Any]:
        values = {_resolve(doc, field) for doc in self._select(collection, where)}
        return sorted(v for v in values if v not in (None, _MISSING))
