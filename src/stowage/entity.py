"""
Typed table entities and their property-bag representation.

An entity type is a dataclass deriving from TableEntity. EntityMapper reads
its fields and declared types once and then converts records to and from a
PropertyBag: an ordered dict of property name -> scalar value, with the
concurrency tag (etag) and timestamp kept on ``PropertyBag.metadata`` the way
the Azure table SDK keeps them.

Per-field options go in dataclass field metadata:

    price: Decimal = field(default=Decimal(0), metadata={"property": "Price"})
    tags: tuple[str, ...] = field(
        default=(), metadata={"encode": ",".join, "decode": parse_tags}
    )
"""

import base64
import binascii
import dataclasses
import functools
import logging
import types
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar, Union, get_args, get_origin, get_type_hints

from .errors import EntityConversionError

logger = logging.getLogger("stowage.entity")

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"

_RESERVED_FIELDS = frozenset({"partition_key", "row_key", "timestamp", "etag"})

ConversionErrorHook = Callable[[EntityConversionError], None]


@dataclass
class TableEntity:
    """Base record for table entities: the two keys plus server metadata."""

    partition_key: str = ""
    row_key: str = ""
    timestamp: datetime | None = None
    etag: str | None = None


E = TypeVar("E", bound=TableEntity)


class PropertyBag(dict):
    """
    Schema-less entity: property name -> scalar value.

    ``metadata`` holds ``etag`` and ``timestamp``; they are not properties.
    """

    def __init__(self, *args: Any, metadata: Mapping[str, Any] | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.metadata: dict[str, Any] = dict(metadata or {})

    def __repr__(self) -> str:
        return f"PropertyBag({dict.__repr__(self)}, metadata={self.metadata!r})"


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    prop: str
    target: Any
    init: bool
    encode: Callable[[Any], Any] | None
    decode: Callable[[Any], Any] | None


def _unwrap_optional(hint: Any) -> Any:
    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
        return None
    return hint


def _parse_datetime(value: str) -> datetime:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
        raise ValueError(f"Not a boolean: {value!r}")
    if isinstance(value, (int, float)):
        return bool(value)
    raise TypeError(f"Not a boolean: {value!r}")


def _convert(target: Any, value: Any) -> Any:
    if value is None or target is None or target is Any or not isinstance(target, type):
        return value

    if issubclass(target, Enum):
        if isinstance(value, target):
            return value
        try:
            return target[str(value)]
        except KeyError:
            return target(value)

    if target is bool:
        return value if isinstance(value, bool) else _parse_bool(value)

    # datetime subclasses date, so both are handled before the isinstance check.
    if target is datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            return _parse_datetime(value)
        raise TypeError(f"Not a datetime: {value!r}")

    if target is date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            return date.fromisoformat(value.strip())
        raise TypeError(f"Not a date: {value!r}")

    if isinstance(value, target) and not isinstance(value, bool):
        return value

    if target is bytes:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        raise TypeError(f"Not binary: {value!r}")

    return target(value)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    return value


def _unwrap_sdk_value(value: Any) -> Any:
    # azure-data-tables wraps typed values (Int64, Guid, ...) in EntityProperty.
    if hasattr(value, "edm_type") and hasattr(value, "value"):
        return value.value
    return value


class EntityMapper(Generic[E]):
    """
    Bidirectional converter between one entity type and PropertyBag.

    strict:
        When True a value that cannot be converted to its declared type
        raises EntityConversionError. When False (default) the field keeps
        its default value, a warning is logged on ``stowage.entity`` and
        ``on_conversion_error`` (if any) is called with the error.
    """

    def __init__(
        self,
        entity_type: type[E],
        *,
        strict: bool = False,
        on_conversion_error: ConversionErrorHook | None = None,
    ) -> None:
        if not (
            isinstance(entity_type, type)
            and dataclasses.is_dataclass(entity_type)
            and issubclass(entity_type, TableEntity)
        ):
            raise TypeError("entity_type must be a dataclass deriving from TableEntity")

        self.entity_type = entity_type
        self.strict = strict
        self.on_conversion_error = on_conversion_error

        hints = get_type_hints(entity_type)
        specs = []
        for f in dataclasses.fields(entity_type):
            if f.name in _RESERVED_FIELDS:
                continue
            specs.append(
                _FieldSpec(
                    name=f.name,
                    prop=f.metadata.get("property", f.name),
                    target=_unwrap_optional(hints.get(f.name, Any)),
                    init=f.init,
                    encode=f.metadata.get("encode"),
                    decode=f.metadata.get("decode"),
                )
            )
        self._fields: tuple[_FieldSpec, ...] = tuple(specs)

    @property
    def properties(self) -> tuple[str, ...]:
        return tuple(spec.prop for spec in self._fields)

    def to_bag(self, record: E) -> PropertyBag:
        bag = PropertyBag()
        bag[PARTITION_KEY] = record.partition_key
        bag[ROW_KEY] = record.row_key

        for spec in self._fields:
            value = getattr(record, spec.name, None)
            if value is not None:
                bag[spec.prop] = spec.encode(value) if spec.encode is not None else _encode(value)

        if record.etag:
            bag.metadata["etag"] = record.etag
        return bag

    def from_bag(self, bag: Mapping[str, Any]) -> E:
        for key in (PARTITION_KEY, ROW_KEY):
            if key not in bag:
                raise ValueError(f"Property bag is missing {key!r}")

        metadata: Mapping[str, Any] = getattr(bag, "metadata", None) or {}
        kwargs: dict[str, Any] = {
            "partition_key": bag[PARTITION_KEY],
            "row_key": bag[ROW_KEY],
            "etag": metadata.get("etag", bag.get("ETag")),
        }

        raw_timestamp = metadata.get("timestamp", bag.get("Timestamp"))
        if raw_timestamp is not None:
            try:
                kwargs["timestamp"] = _convert(datetime, raw_timestamp)
            except (ValueError, TypeError) as exc:
                self._conversion_failed("timestamp", raw_timestamp, datetime, exc)

        late: dict[str, Any] = {}
        for spec in self._fields:
            if spec.prop not in bag:
                continue
            raw = _unwrap_sdk_value(bag[spec.prop])
            try:
                value = spec.decode(raw) if spec.decode is not None else _convert(spec.target, raw)
            except (ValueError, TypeError, ArithmeticError, binascii.Error) as exc:
                self._conversion_failed(spec.name, raw, spec.target, exc)
                continue
            if spec.init:
                kwargs[spec.name] = value
            else:
                late[spec.name] = value

        record = self.entity_type(**kwargs)
        for name, value in late.items():
            setattr(record, name, value)
        return record

    def _conversion_failed(self, name: str, value: Any, target: Any, exc: Exception) -> None:
        error = EntityConversionError(name, value, target)
        if self.strict:
            raise error from exc

        logger.warning(
            "Skipping property %r on %s: %s",
            name,
            self.entity_type.__name__,
            exc,
        )
        if self.on_conversion_error is not None:
            self.on_conversion_error(error)


@functools.lru_cache(maxsize=None)
def mapper_for(entity_type: type[E]) -> EntityMapper[E]:
    """Shared non-strict mapper for ``entity_type``."""
    return EntityMapper(entity_type)


def to_bag(record: TableEntity) -> PropertyBag:
    return mapper_for(type(record)).to_bag(record)


def from_bag(bag: Mapping[str, Any], entity_type: type[E]) -> E:
    return mapper_for(entity_type).from_bag(bag)
