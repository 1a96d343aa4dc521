import asyncio
import importlib
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..entity import EntityMapper, PropertyBag, TableEntity, mapper_for, E
from ..errors import StorageError
from .base import StorageSurface


class TransactionActionType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class TableTransactionAction:
    """One entity operation inside a batch transaction."""

    action_type: TransactionActionType
    entity: TableEntity
    etag: str = "*"

    @classmethod
    def insert(cls, entity: TableEntity) -> "TableTransactionAction":
        return cls(TransactionActionType.INSERT, entity)

    @classmethod
    def upsert(cls, entity: TableEntity) -> "TableTransactionAction":
        return cls(TransactionActionType.UPSERT, entity)

    @classmethod
    def update(cls, entity: TableEntity, etag: str = "*") -> "TableTransactionAction":
        return cls(TransactionActionType.UPDATE, entity, etag)

    @classmethod
    def delete(cls, entity: TableEntity, etag: str = "*") -> "TableTransactionAction":
        return cls(TransactionActionType.DELETE, entity, etag)


def _require(value: str | None, name: str) -> None:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} cannot be null or empty.")


def _match_kwargs(etag: str | None) -> dict[str, Any]:
    """Conditional-request kwargs for an etag; "*" means unconditional."""
    if not etag or etag == "*":
        return {}
    try:
        core = importlib.import_module("azure.core")
    except ImportError:
        return {"etag": etag}
    return {"etag": etag, "match_condition": core.MatchConditions.IfNotModified}


class TableStore(StorageSurface):
    """
    Table surface bound to one table.

    ``table_client`` is an async table client with the method names of
    ``azure.data.tables.aio.TableClient`` (create_entity, upsert_entity,
    get_entity, update_entity, delete_entity, query_entities, list_entities,
    submit_transaction, create_table, delete_table). Entities are TableEntity
    dataclasses; EntityMapper converts them to and from property bags.
    """

    service = "table"

    def __init__(
        self,
        table_client: Any,
        options: Any = None,
        *,
        strict_mapping: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(options, **kwargs)
        self.client = table_client
        self.table_name = getattr(table_client, "table_name", None)
        self.strict_mapping = strict_mapping
        self._mappers: dict[type, EntityMapper[Any]] = {}

    @classmethod
    def from_options(cls, table_name: str, options: Any, **kwargs: Any) -> "TableStore":
        """
        Build a store backed by ``azure.data.tables.aio.TableClient``.

        The SDK's own retry pipeline is switched off (``retry_total=0``):
        retries are decided by this store's RetryPolicy only.

        Requires the ``azure`` extra.
        """
        _require(table_name, "table_name")
        options.validate()
        tables_aio = importlib.import_module("azure.data.tables.aio")
        if options.connection_string:
            client = tables_aio.TableClient.from_connection_string(
                options.connection_string, table_name=table_name, retry_total=0
            )
        else:
            credentials = importlib.import_module("azure.core.credentials")
            if options.account_key:
                credential: Any = credentials.AzureNamedKeyCredential(
                    options.account_name, options.account_key
                )
            else:
                credential = credentials.AzureSasCredential(options.sas_token)
            client = tables_aio.TableClient(
                endpoint=options.endpoint("table"),
                table_name=table_name,
                credential=credential,
                retry_total=0,
            )
        return cls(client, options, **kwargs)

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "TableStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _mapper(self, entity_type: type[E]) -> EntityMapper[E]:
        if not self.strict_mapping:
            return mapper_for(entity_type)
        mapper = self._mappers.get(entity_type)
        if mapper is None:
            mapper = EntityMapper(entity_type, strict=True)
            self._mappers[entity_type] = mapper
        return mapper

    def _to_bag(self, entity: TableEntity) -> PropertyBag:
        if entity is None:
            raise ValueError("entity cannot be None.")
        _require(entity.partition_key, "partition_key")
        _require(entity.row_key, "row_key")
        return self._mapper(type(entity)).to_bag(entity)

    # Table operations

    async def create_table_if_not_exists(self, *, cancel: asyncio.Event | None = None) -> bool:
        """True if the table was created, False if it already existed."""
        try:
            await self._execute(
                "create_table",
                f"Failed to create table '{self.table_name}'.",
                lambda: self.client.create_table(),
                cancel=cancel,
            )
        except StorageError as err:
            if err.status_code == 409:
                return False
            raise
        return True

    async def delete_table(self, *, cancel: asyncio.Event | None = None) -> bool:
        """True if the table was deleted, False if it did not exist."""
        try:
            await self._execute(
                "delete_table",
                f"Failed to delete table '{self.table_name}'.",
                lambda: self.client.delete_table(),
                cancel=cancel,
            )
        except StorageError as err:
            if err.status_code == 404:
                return False
            raise
        return True

    # Entity operations

    async def insert_entity(
        self, entity: TableEntity, *, cancel: asyncio.Event | None = None
    ) -> None:
        """Insert; fails if an entity with the same keys already exists."""
        bag = self._to_bag(entity)
        await self._execute(
            "insert_entity",
            f"Failed to insert entity into table '{self.table_name}'.",
            lambda: self.client.create_entity(entity=bag),
            cancel=cancel,
        )

    async def upsert_entity(
        self, entity: TableEntity, *, cancel: asyncio.Event | None = None
    ) -> None:
        """Insert or replace."""
        bag = self._to_bag(entity)
        await self._execute(
            "upsert_entity",
            f"Failed to upsert entity into table '{self.table_name}'.",
            lambda: self.client.upsert_entity(entity=bag, mode="replace"),
            cancel=cancel,
        )

    async def update_entity(
        self,
        entity: TableEntity,
        etag: str = "*",
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Merge ``entity`` into the stored one; ``etag`` "*" skips the version check."""
        bag = self._to_bag(entity)
        await self._execute(
            "update_entity",
            f"Failed to update entity in table '{self.table_name}'.",
            lambda: self.client.update_entity(entity=bag, mode="merge", **_match_kwargs(etag)),
            cancel=cancel,
        )

    async def get_entity(
        self,
        entity_type: type[E],
        partition_key: str,
        row_key: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> E | None:
        """The entity, or None when it does not exist."""
        _require(partition_key, "partition_key")
        _require(row_key, "row_key")
        try:
            bag = await self._execute(
                "get_entity",
                f"Failed to get entity from table '{self.table_name}'.",
                lambda: self.client.get_entity(partition_key=partition_key, row_key=row_key),
                cancel=cancel,
            )
        except StorageError as err:
            if err.status_code == 404:
                return None
            raise
        return self._mapper(entity_type).from_bag(bag)

    async def delete_entity(
        self,
        partition_key: str,
        row_key: str,
        etag: str = "*",
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Delete; a missing entity is not an error."""
        _require(partition_key, "partition_key")
        _require(row_key, "row_key")
        try:
            await self._execute(
                "delete_entity",
                f"Failed to delete entity from table '{self.table_name}'.",
                lambda: self.client.delete_entity(
                    partition_key=partition_key, row_key=row_key, **_match_kwargs(etag)
                ),
                cancel=cancel,
            )
        except StorageError as err:
            if err.status_code != 404:
                raise

    async def query_entities(
        self,
        entity_type: type[E],
        filter: str | None = None,
        max_per_page: int | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[E]:
        """All entities matching an OData ``filter`` (every entity when None)."""
        mapper = self._mapper(entity_type)

        async def collect() -> list[Any]:
            if filter is None:
                pages = self.client.list_entities(results_per_page=max_per_page)
            else:
                pages = self.client.query_entities(filter, results_per_page=max_per_page)
            return [bag async for bag in pages]

        bags = await self._execute(
            "query_entities",
            f"Failed to query entities from table '{self.table_name}'.",
            collect,
            cancel=cancel,
        )
        return [mapper.from_bag(bag) for bag in bags]

    async def query_by_partition_key(
        self,
        entity_type: type[E],
        partition_key: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[E]:
        _require(partition_key, "partition_key")
        escaped = partition_key.replace("'", "''")
        return await self.query_entities(
            entity_type, f"PartitionKey eq '{escaped}'", cancel=cancel
        )

    async def get_all_entities(
        self, entity_type: type[E], *, cancel: asyncio.Event | None = None
    ) -> list[E]:
        return await self.query_entities(entity_type, None, cancel=cancel)

    async def execute_batch(
        self,
        actions: Iterable[TableTransactionAction],
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Submit ``actions`` as one transaction (all in the same partition)."""
        operations: list[tuple[Any, ...]] = []
        for action in actions or ():
            bag = self._to_bag(action.entity)
            if action.action_type is TransactionActionType.INSERT:
                operations.append(("create", bag))
            elif action.action_type is TransactionActionType.UPSERT:
                operations.append(("upsert", bag, {"mode": "replace"}))
            elif action.action_type is TransactionActionType.UPDATE:
                operations.append(("update", bag, {"mode": "merge", **_match_kwargs(action.etag)}))
            else:
                operations.append(("delete", bag, _match_kwargs(action.etag)))

        if not operations:
            raise ValueError("Batch actions cannot be null or empty.")

        await self._execute(
            "execute_batch",
            f"Failed to execute batch transaction on table '{self.table_name}'.",
            lambda: self.client.submit_transaction(operations),
            cancel=cancel,
        )
