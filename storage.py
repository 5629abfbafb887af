"""
Storage backends for stores, products and orders.

Every backend implements the same `Storage` contract, so the API can run on
the in-memory backend during development and on SQL or MongoDB in production
without any caller noticing the difference beyond persistence:

* `create_*` assigns an id and a creation timestamp and returns the record.
* `get_*` returns ``None`` for unknown (or malformed) ids; absence is not an error.
* `list_*` returns records in insertion order, ``[]`` when there are none.
* `update_*` applies a partial update and raises `NotFoundError` for unknown ids.

Input validation happens upstream in the pydantic schemas; driver failures
surface as `PersistenceError`.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError
from sqlalchemy import create_engine, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

import database
from config import Settings
from errors import NotFoundError, PersistenceError
from logging_config import get_logger
from schemas import NewOrder, NewProduct, Order, OrderStatus, Product, Store, StoreCreate
from sql_models import Base, OrderRow, ProductRow, StoreRow

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def utcnow() -> datetime:
    # Millisecond precision, the finest every backend (BSON included) can keep
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Storage(ABC):
    backend = "abstract"

    @abstractmethod
    def create_store(self, data: StoreCreate) -> Store: ...

    @abstractmethod
    def get_store(self, store_id: str) -> Optional[Store]: ...

    @abstractmethod
    def list_stores(self) -> List[Store]: ...

    @abstractmethod
    def update_store(self, store_id: str, changes: Dict[str, Any]) -> Store: ...

    @abstractmethod
    def create_product(self, data: NewProduct) -> Product: ...

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]: ...

    @abstractmethod
    def list_products(self, store_id: str) -> List[Product]: ...

    @abstractmethod
    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product: ...

    @abstractmethod
    def create_order(self, data: NewOrder) -> Order: ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    def list_orders(self, store_id: str) -> List[Order]: ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: OrderStatus) -> Order: ...

    @abstractmethod
    def ping(self) -> None:
        """Run a trivial read; raise `PersistenceError` if the backend is unreachable."""

    def close(self) -> None:
        pass


# --------- In-memory ---------

class MemoryStorage(Storage):
    """Dict-backed storage for development and tests. Not safe for concurrent writers."""

    backend = "memory"

    def __init__(self):
        self._tables: Dict[str, Dict[str, BaseModel]] = {"store": {}, "product": {}, "order": {}}

    def _create(self, table: str, model: Type[RecordT], values: Dict[str, Any]) -> RecordT:
        record = model(id=uuid4().hex, created_at=utcnow(), **values)
        self._tables[table][record.id] = record
        return record.model_copy(deep=True)

    def _get(self, table: str, record_id: str):
        record = self._tables[table].get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    def _list(self, table: str, **filters) -> list:
        return [
            record.model_copy(deep=True)
            for record in self._tables[table].values()
            if all(getattr(record, k) == v for k, v in filters.items())
        ]

    def _update(self, table: str, entity: str, record_id: str, changes: Dict[str, Any]):
        current = self._tables[table].get(record_id)
        if current is None:
            raise NotFoundError(entity, record_id)
        updated = type(current).model_validate({**current.model_dump(), **changes})
        self._tables[table][record_id] = updated
        return updated.model_copy(deep=True)

    def create_store(self, data: StoreCreate) -> Store:
        return self._create("store", Store, data.model_dump())

    def get_store(self, store_id: str) -> Optional[Store]:
        return self._get("store", store_id)

    def list_stores(self) -> List[Store]:
        return self._list("store")

    def update_store(self, store_id: str, changes: Dict[str, Any]) -> Store:
        return self._update("store", "Store", store_id, changes)

    def create_product(self, data: NewProduct) -> Product:
        return self._create("product", Product, data.model_dump())

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._get("product", product_id)

    def list_products(self, store_id: str) -> List[Product]:
        return self._list("product", store_id=store_id)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        return self._update("product", "Product", product_id, changes)

    def create_order(self, data: NewOrder) -> Order:
        return self._create("order", Order, data.model_dump())

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._get("order", order_id)

    def list_orders(self, store_id: str) -> List[Order]:
        return self._list("order", store_id=store_id)

    def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        return self._update("order", "Order", order_id, {"status": status})

    def ping(self) -> None:
        return None


# --------- SQL (SQLAlchemy) ---------

def _pk(record_id: str) -> Optional[int]:
    # Only the canonical rendering of a key ("7", not "07" or " 7") names a row
    if not isinstance(record_id, str) or not record_id.isdigit():
        return None
    pk = int(record_id)
    return pk if str(pk) == record_id else None


class SqlStorage(Storage):
    """Relational storage; the instance owns its engine and session factory.

    The schema is created on first use, so the service can start (and report
    the outage through /health) while the database is down.
    """

    backend = "sql"

    def __init__(self, database_url: Optional[str] = None):
        url = database_url or "sqlite:///./storefront.db"
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.error("sql_schema_failed", error=str(exc))
            raise PersistenceError(f"Could not initialise schema: {exc}") from exc
        self._schema_ready = True

    @contextmanager
    def _session(self):
        self._ensure_schema()
        session = self._sessions()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("sql_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc
        finally:
            session.close()

    @staticmethod
    def _to_record(model: Type[RecordT], row) -> RecordT:
        data = {column.key: getattr(row, column.key) for column in row.__table__.columns}
        data["id"] = str(row.id)
        if "store_id" in data:
            data["store_id"] = str(row.store_id)
        data["created_at"] = as_utc(row.created_at)
        return model.model_validate(data)

    def _insert(self, model: Type[RecordT], row) -> RecordT:
        row.created_at = utcnow()
        with self._session() as session:
            session.add(row)
            session.commit()
            return self._to_record(model, row)

    def _get(self, model: Type[RecordT], row_cls, record_id: str) -> Optional[RecordT]:
        pk = _pk(record_id)
        if pk is None:
            return None
        with self._session() as session:
            row = session.get(row_cls, pk)
            return self._to_record(model, row) if row is not None else None

    def _list(self, model: Type[RecordT], row_cls, store_id: Optional[str] = None) -> List[RecordT]:
        query = select(row_cls).order_by(row_cls.id)
        if store_id is not None:
            pk = _pk(store_id)
            if pk is None:
                return []
            query = query.where(row_cls.store_id == pk)
        with self._session() as session:
            return [self._to_record(model, row) for row in session.scalars(query)]

    def _update(self, model: Type[RecordT], row_cls, entity: str, record_id: str, changes: Dict[str, Any]) -> RecordT:
        pk = _pk(record_id)
        with self._session() as session:
            row = session.get(row_cls, pk) if pk is not None else None
            if row is None:
                raise NotFoundError(entity, record_id)
            for key, value in changes.items():
                setattr(row, key, value)
            session.commit()
            return self._to_record(model, row)

    def create_store(self, data: StoreCreate) -> Store:
        return self._insert(Store, StoreRow(**data.model_dump(), is_active=True))

    def get_store(self, store_id: str) -> Optional[Store]:
        return self._get(Store, StoreRow, store_id)

    def list_stores(self) -> List[Store]:
        return self._list(Store, StoreRow)

    def update_store(self, store_id: str, changes: Dict[str, Any]) -> Store:
        return self._update(Store, StoreRow, "Store", store_id, changes)

    def create_product(self, data: NewProduct) -> Product:
        values = data.model_dump()
        store_pk = _pk(values.pop("store_id"))
        if store_pk is None:
            raise NotFoundError("Store", data.store_id)
        return self._insert(Product, ProductRow(store_id=store_pk, **values))

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._get(Product, ProductRow, product_id)

    def list_products(self, store_id: str) -> List[Product]:
        return self._list(Product, ProductRow, store_id)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        return self._update(Product, ProductRow, "Product", product_id, changes)

    def create_order(self, data: NewOrder) -> Order:
        store_pk = _pk(data.store_id)
        if store_pk is None:
            raise NotFoundError("Store", data.store_id)
        row = OrderRow(
            store_id=store_pk,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            total_amount=data.total_amount,
            status=data.status.value,
            # Amounts kept as strings so the JSON column round-trips them exactly
            items=[{**item.model_dump(by_alias=True), "unitPrice": str(item.unit_price)} for item in data.items],
        )
        return self._insert(Order, row)

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._get(Order, OrderRow, order_id)

    def list_orders(self, store_id: str) -> List[Order]:
        return self._list(Order, OrderRow, store_id)

    def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        return self._update(Order, OrderRow, "Order", order_id, {"status": status.value})

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()


# --------- MongoDB ---------

class MongoStorage(Storage):
    backend = "mongo"

    def __init__(self, db: Database):
        self.db = db

    @contextmanager
    def _errors(self):
        try:
            yield
        except PyMongoError as exc:
            logger.error("mongo_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc

    def _insert(self, collection: str, model: Type[RecordT], values: Dict[str, Any]) -> RecordT:
        values["created_at"] = utcnow()
        with self._errors():
            new_id = database.create_document(self.db, collection, values)
        return model.model_validate({**values, "id": new_id})

    def _get(self, collection: str, model: Type[RecordT], record_id: str) -> Optional[RecordT]:
        oid = database.to_object_id(record_id)
        if oid is None:
            return None
        with self._errors():
            doc = database.serialize_doc(self.db[collection].find_one({"_id": oid}))
        return model.model_validate(doc) if doc else None

    def _list(self, collection: str, model: Type[RecordT], filter_dict: Optional[dict] = None) -> List[RecordT]:
        with self._errors():
            docs = database.get_documents(self.db, collection, filter_dict)
        return [model.model_validate(doc) for doc in docs]

    def _update(self, collection: str, model: Type[RecordT], entity: str, record_id: str, changes: Dict[str, Any]) -> RecordT:
        oid = database.to_object_id(record_id)
        if oid is None:
            raise NotFoundError(entity, record_id)
        with self._errors():
            res = self.db[collection].update_one({"_id": oid}, {"$set": database.to_bson(changes)})
            if res.matched_count == 0:
                raise NotFoundError(entity, record_id)
            doc = database.serialize_doc(self.db[collection].find_one({"_id": oid}))
        return model.model_validate(doc)

    def create_store(self, data: StoreCreate) -> Store:
        return self._insert("store", Store, {**data.model_dump(), "is_active": True})

    def get_store(self, store_id: str) -> Optional[Store]:
        return self._get("store", Store, store_id)

    def list_stores(self) -> List[Store]:
        return self._list("store", Store)

    def update_store(self, store_id: str, changes: Dict[str, Any]) -> Store:
        return self._update("store", Store, "Store", store_id, changes)

    def create_product(self, data: NewProduct) -> Product:
        return self._insert("product", Product, data.model_dump())

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._get("product", Product, product_id)

    def list_products(self, store_id: str) -> List[Product]:
        return self._list("product", Product, {"store_id": store_id})

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        return self._update("product", Product, "Product", product_id, changes)

    def create_order(self, data: NewOrder) -> Order:
        values = data.model_dump()
        values["status"] = data.status.value
        return self._insert("order", Order, values)

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._get("order", Order, order_id)

    def list_orders(self, store_id: str) -> List[Order]:
        return self._list("order", Order, {"store_id": store_id})

    def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        return self._update("order", Order, "Order", order_id, {"status": status.value})

    def ping(self) -> None:
        with self._errors():
            self.db.command("ping")

    def close(self) -> None:
        self.db.client.close()


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "sql":
        return SqlStorage(settings.database_url)
    if settings.storage_backend == "mongo":
        return MongoStorage(database.connect(settings.database_url, settings.database_name))
    return MemoryStorage()
