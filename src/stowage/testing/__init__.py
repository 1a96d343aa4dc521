"""Testing utilities for deterministic retries and in-memory tables."""

from __future__ import annotations

import re
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..config import RetryPolicy
from ..entity import PARTITION_KEY, ROW_KEY, PropertyBag


class FakeStorageError(Exception):
    """Backend-shaped failure carrying an HTTP status and a service error code."""

    def __init__(
        self,
        status_code: int | None = None,
        error_code: str | None = None,
        message: str = "",
    ) -> None:
        super().__init__(message or f"status={status_code} code={error_code}")
        self.status_code = status_code
        self.error_code = error_code


def instant_policy(max_attempts: int = 3, *, enabled: bool = True) -> RetryPolicy:
    """A policy whose delays are all zero, for fast deterministic retries."""

    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay_s=0.0,
        max_delay_s=0.0,
        enabled=enabled,
        jitter_ratio=0.0,
    )


@dataclass
class FakeSleeper:
    """
    Async sleeper that records requested delays instead of waiting.

    Pass as ``sleeper=`` to AsyncRetry or a storage surface. ``on_sleep`` runs
    after each recorded delay, e.g. to set a cancel event mid-wait.
    """

    delays: list[float] = field(default_factory=list)
    on_sleep: Callable[[float], None] | None = None

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)

    def reset(self) -> None:
        self.delays.clear()


@dataclass
class FakeSyncSleeper:
    """Blocking counterpart of FakeSleeper."""

    delays: list[float] = field(default_factory=list)
    on_sleep: Callable[[float], None] | None = None

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


class FlakyOperation:
    """
    Operation that raises the queued failures in order, then returns ``result``.

    Usable both as a sync callable (``op()``) and as an async one
    (``await op.async_call()``). ``calls`` counts invocations of either form.
    """

    def __init__(
        self,
        failures: Sequence[BaseException] = (),
        result: Any = "ok",
        *,
        always: BaseException | None = None,
    ) -> None:
        self._failures = deque(failures)
        self._always = always
        self.result = result
        self.calls = 0

    @classmethod
    def always(cls, failure: BaseException) -> FlakyOperation:
        """Fail with ``failure`` on every call."""
        return cls(always=failure)

    def _next(self) -> Any:
        self.calls += 1
        if self._always is not None:
            raise self._always
        if self._failures:
            raise self._failures.popleft()
        return self.result

    def __call__(self) -> Any:
        return self._next()

    async def async_call(self) -> Any:
        return self._next()


_CLAUSE = re.compile(r"^\s*(\w+)\s+eq\s+'((?:[^']|'')*)'\s*$")


def _parse_filter(query_filter: str) -> list[tuple[str, str]]:
    """Parse ``Prop eq 'value' and Other eq 'value'``; nothing richer."""
    clauses = []
    for part in re.split(r"\s+and\s+", query_filter.strip()):
        match = _CLAUSE.match(part)
        if match is None:
            raise FakeStorageError(400, "InvalidInput", f"Unsupported filter: {query_filter!r}")
        clauses.append((match.group(1), match.group(2).replace("''", "'")))
    return clauses


class FakeTableClient:
    """
    In-memory stand-in for ``azure.data.tables.aio.TableClient``.

    Entities are kept per (PartitionKey, RowKey) with a server-assigned etag
    and timestamp. Failures queued with ``fail_next`` are raised by the next
    remote calls, in order, before the call has any effect.
    """

    def __init__(self, table_name: str = "fake", *, exists: bool = True) -> None:
        self.table_name = table_name
        self.exists = exists
        self.entities: dict[tuple[str, str], PropertyBag] = {}
        self.calls: list[str] = []
        self.closed = False
        self._failures: deque[BaseException] = deque()
        self._version = 0

    def fail_next(self, *failures: BaseException) -> None:
        self._failures.extend(failures)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self._failures:
            raise self._failures.popleft()
        if not self.exists and name not in {"create_table", "delete_table"}:
            raise FakeStorageError(404, "TableNotFound")

    def _stamp(self, bag: PropertyBag) -> PropertyBag:
        self._version += 1
        now = datetime.now(UTC)
        stored = PropertyBag(bag)
        stored.metadata = {"etag": f'W/"{self._version}"', "timestamp": now}
        return stored

    def _key(self, entity: dict[str, Any]) -> tuple[str, str]:
        try:
            return entity[PARTITION_KEY], entity[ROW_KEY]
        except KeyError:
            raise FakeStorageError(400, "PropertiesNeedValue") from None

    def _check_etag(self, key: tuple[str, str], etag: str | None) -> None:
        if etag is None:
            return
        current = self.entities.get(key)
        if current is None or current.metadata.get("etag") != etag:
            raise FakeStorageError(412, "UpdateConditionNotSatisfied")

    def _copy(self, key: tuple[str, str]) -> PropertyBag:
        stored = self.entities[key]
        return PropertyBag(stored, metadata=stored.metadata)

    # Table

    async def create_table(self) -> None:
        self._enter("create_table")
        if self.exists:
            raise FakeStorageError(409, "TableAlreadyExists")
        self.exists = True

    async def delete_table(self) -> None:
        self._enter("delete_table")
        if not self.exists:
            raise FakeStorageError(404, "TableNotFound")
        self.exists = False
        self.entities.clear()

    async def close(self) -> None:
        self.closed = True

    # Entities

    def _create(self, entity: dict[str, Any]) -> None:
        key = self._key(entity)
        if key in self.entities:
            raise FakeStorageError(409, "EntityAlreadyExists")
        self.entities[key] = self._stamp(PropertyBag(entity))

    def _upsert(self, entity: dict[str, Any], mode: str) -> None:
        key = self._key(entity)
        if mode == "merge" and key in self.entities:
            merged = PropertyBag(self.entities[key])
            merged.update(entity)
            self.entities[key] = self._stamp(merged)
        else:
            self.entities[key] = self._stamp(PropertyBag(entity))

    def _update(self, entity: dict[str, Any], mode: str, etag: str | None) -> None:
        key = self._key(entity)
        if key not in self.entities:
            raise FakeStorageError(404, "ResourceNotFound")
        self._check_etag(key, etag)
        self._upsert(entity, mode)

    def _delete(self, key: tuple[str, str], etag: str | None) -> None:
        if key not in self.entities:
            raise FakeStorageError(404, "ResourceNotFound")
        self._check_etag(key, etag)
        del self.entities[key]

    async def create_entity(self, entity: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        self._enter("create_entity")
        self._create(entity)
        return dict(self.entities[self._key(entity)].metadata)

    async def upsert_entity(
        self, entity: dict[str, Any], mode: str = "merge", **kwargs: Any
    ) -> dict[str, Any]:
        self._enter("upsert_entity")
        self._upsert(entity, mode)
        return dict(self.entities[self._key(entity)].metadata)

    async def update_entity(
        self,
        entity: dict[str, Any],
        mode: str = "merge",
        *,
        etag: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        self._enter("update_entity")
        self._update(entity, mode, etag)
        return dict(self.entities[self._key(entity)].metadata)

    async def get_entity(self, partition_key: str, row_key: str, **kwargs: Any) -> PropertyBag:
        self._enter("get_entity")
        key = (partition_key, row_key)
        if key not in self.entities:
            raise FakeStorageError(404, "ResourceNotFound")
        return self._copy(key)

    async def delete_entity(
        self,
        partition_key: str,
        row_key: str,
        *,
        etag: str | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter("delete_entity")
        self._delete((partition_key, row_key), etag)

    async def _iterate(
        self, clauses: list[tuple[str, str]], results_per_page: int | None
    ) -> AsyncIterator[PropertyBag]:
        for key in sorted(self.entities):
            stored = self.entities[key]
            if all(str(stored.get(prop)) == value for prop, value in clauses):
                yield self._copy(key)

    def list_entities(self, *, results_per_page: int | None = None, **kwargs: Any) -> AsyncIterator[PropertyBag]:
        self._enter("list_entities")
        return self._iterate([], results_per_page)

    def query_entities(
        self,
        query_filter: str,
        *,
        results_per_page: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[PropertyBag]:
        self._enter("query_entities")
        return self._iterate(_parse_filter(query_filter), results_per_page)

    async def submit_transaction(self, operations: Iterable[tuple[Any, ...]], **kwargs: Any) -> list[dict[str, Any]]:
        self._enter("submit_transaction")
        operations = list(operations)
        if not operations:
            raise FakeStorageError(400, "InvalidInput")
        if len({op[1][PARTITION_KEY] for op in operations}) > 1:
            raise FakeStorageError(400, "CommandsInBatchActOnDifferentPartitions")

        snapshot = dict(self.entities)
        try:
            for op in operations:
                kind, entity = op[0], op[1]
                options: dict[str, Any] = op[2] if len(op) > 2 else {}
                if kind == "create":
                    self._create(entity)
                elif kind == "upsert":
                    self._upsert(entity, options.get("mode", "merge"))
                elif kind == "update":
                    self._update(entity, options.get("mode", "merge"), options.get("etag"))
                elif kind == "delete":
                    self._delete(self._key(entity), options.get("etag"))
                else:
                    raise FakeStorageError(400, "InvalidInput", f"Unknown operation {kind!r}")
        except FakeStorageError:
            self.entities = snapshot
            raise
        return [{} for _ in operations]


__all__ = [
    "FakeSleeper",
    "FakeStorageError",
    "FakeSyncSleeper",
    "FakeTableClient",
    "FlakyOperation",
    "instant_policy",
]
