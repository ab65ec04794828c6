"""Entity store: the document collections behind orders and notifications.

``MongoEntityStore`` talks to MongoDB through pymongo. ``InMemoryEntityStore``
implements the same small surface (equality on dotted paths, ``$in``, ``$ne``
in queries; ``$set``, ``$push``, ``$pull`` with ``$[]`` and ``$[name]``
array filters in updates) for tests and local runs.
"""
import copy
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Iterable, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from laundry.core_settings import get_settings
from laundry.domain.errors import StoreError

ORDERS = "orders"
SHOPS = "shops"
ADMINS = "admins"
CUSTOMERS = "customers"
NOTIFICATIONS = "notifications"

Sort = Optional[list[tuple[str, int]]]
ArrayFilters = Optional[list[dict]]


def new_id() -> str:
    return str(ObjectId())


class EntityStore:
    def find_one(self, collection: str, query: dict) -> Optional[dict]:
        raise NotImplementedError

    def find(self, collection: str, query: dict, sort: Sort = None, limit: Optional[int] = None) -> list[dict]:
        raise NotImplementedError

    def insert_one(self, collection: str, doc: dict) -> str:
        raise NotImplementedError

    def update_one(self, collection: str, query: dict, update: dict, array_filters: ArrayFilters = None) -> int:
        """Apply ``update`` to the first match; return the matched count."""
        raise NotImplementedError

    def update_many(self, collection: str, query: dict, update: dict, array_filters: ArrayFilters = None) -> int:
        """Apply ``update`` to every match; return the modified count."""
        raise NotImplementedError

    def delete_one(self, collection: str, query: dict) -> int:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def ensure_indexes(self) -> None:
        pass


@contextmanager
def _driver_errors(operation: str, collection: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise StoreError(f"{operation} on {collection}: duplicate key ({e.details})") from e
    except PyMongoError as e:
        raise StoreError(f"{operation} on {collection} failed: {e}") from e


class MongoEntityStore(EntityStore):
    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    def find_one(self, collection, query):
        with _driver_errors("find_one", collection):
            return self.db[collection].find_one(query)

    def find(self, collection, query, sort=None, limit=None):
        with _driver_errors("find", collection):
            cursor = self.db[collection].find(query)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(int(limit))
            return list(cursor)

    def insert_one(self, collection, doc):
        with _driver_errors("insert_one", collection):
            return str(self.db[collection].insert_one(doc).inserted_id)

    def update_one(self, collection, query, update, array_filters=None):
        with _driver_errors("update_one", collection):
            return self.db[collection].update_one(query, update, array_filters=array_filters).matched_count

    def update_many(self, collection, query, update, array_filters=None):
        with _driver_errors("update_many", collection):
            return self.db[collection].update_many(query, update, array_filters=array_filters).modified_count

    def delete_one(self, collection, query):
        with _driver_errors("delete_one", collection):
            return self.db[collection].delete_one(query).deleted_count

    def ping(self):
        with _driver_errors("ping", "admin"):
            self.client.admin.command("ping")
        return True

    def ensure_indexes(self):
        with _driver_errors("create_index", ORDERS):
            self.db[ORDERS].create_index([("order_id", ASCENDING)], unique=True)
            self.db[SHOPS].create_index([("shop_id", ASCENDING)], unique=True)
            self.db[SHOPS].create_index([("orders.id", ASCENDING)])
            self.db[ADMINS].create_index([("shop_id", ASCENDING)])
            self.db[ADMINS].create_index([("shops.orders.id", ASCENDING)])
            self.db[CUSTOMERS].create_index([("customer_id", ASCENDING)], unique=True)
            self.db[CUSTOMERS].create_index([("orders.id", ASCENDING)])
            self.db[NOTIFICATIONS].create_index(
                [("recipient_type", ASCENDING), ("recipient_id", ASCENDING), ("read", ASCENDING)]
            )


def _values_at(value: Any, path: list[str]) -> list[Any]:
    """Values reachable at a dotted path, descending into arrays like MongoDB."""
    if not path:
        return value if isinstance(value, list) else [value]
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_values_at(item, path))
        return found
    if isinstance(value, dict) and path[0] in value:
        return _values_at(value[path[0]], path[1:])
    return []


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        # a missing field compares as null, as in MongoDB
        values = _values_at(doc, key.split(".")) or [None]
        if isinstance(expected, dict) and expected and all(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                if op == "$in":
                    if not any(v in operand for v in values):
                        return False
                elif op == "$ne":
                    if operand in values:
                        return False
                else:
                    raise StoreError(f"Unsupported query operator {op}")
        elif expected not in values:
            return False
    return True


def _filter_for(name: str, array_filters: list[dict]) -> dict:
    """Conditions of the array filter bound to identifier ``name``."""
    prefix = f"{name}."
    conditions = {}
    for array_filter in array_filters:
        for key, value in array_filter.items():
            if key.startswith(prefix):
                conditions[key[len(prefix):]] = value
    if not conditions:
        raise StoreError(f"No array filter for identifier {name}")
    return conditions


def _targets(value: Any, parts: list[str], array_filters: list[dict]) -> list[tuple[Any, Any]]:
    """(container, key) pairs an update path addresses, expanding ``$[]`` and ``$[name]``."""
    head, rest = parts[0], parts[1:]
    if head.startswith("$["):
        if not isinstance(value, list):
            return []
        name = head[2:-1]
        if name:
            conditions = _filter_for(name, array_filters)
            indexes = [i for i, item in enumerate(value) if isinstance(item, dict) and _matches(item, conditions)]
        else:
            indexes = list(range(len(value)))
        if not rest:
            return [(value, i) for i in indexes]
        found = []
        for i in indexes:
            found.extend(_targets(value[i], rest, array_filters))
        return found
    if not isinstance(value, dict):
        return []
    if not rest:
        return [(value, head)]
    if head not in value:
        if rest[0].startswith("$["):
            return []
        value[head] = {}
    return _targets(value[head], rest, array_filters)


_MISSING = object()


def _current(container: Any, key: Any) -> Any:
    if isinstance(container, list):
        return container[key]
    return container.get(key, _MISSING)


def _apply_update(doc: dict, update: dict, array_filters: ArrayFilters = None) -> bool:
    changed = False
    for op, fields in update.items():
        if op not in ("$set", "$push", "$pull"):
            raise StoreError(f"Unsupported update operator {op}")
        for key, value in fields.items():
            for container, leaf in _targets(doc, key.split("."), array_filters or []):
                current = _current(container, leaf)
                if op == "$set":
                    if current != value:
                        container[leaf] = copy.deepcopy(value)
                        changed = True
                elif op == "$push":
                    if current is _MISSING:
                        container[leaf] = current = []
                    current.append(copy.deepcopy(value))
                    changed = True
                elif isinstance(current, list):
                    kept = [
                        item for item in current
                        if not (_matches(item, value) if isinstance(value, dict) and isinstance(item, dict) else item == value)
                    ]
                    if len(kept) != len(current):
                        current[:] = kept
                        changed = True
    return changed


class InMemoryEntityStore(EntityStore):
    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()

    def _collection(self, name: str) -> dict[str, dict]:
        return self._collections.setdefault(name, {})

    def _scan(self, collection: str, query: dict) -> Iterable[dict]:
        return [doc for doc in self._collection(collection).values() if _matches(doc, query)]

    def find_one(self, collection, query):
        with self._lock:
            for doc in self._scan(collection, query):
                return copy.deepcopy(doc)
        return None

    def find(self, collection, query, sort=None, limit=None):
        with self._lock:
            docs = [copy.deepcopy(doc) for doc in self._scan(collection, query)]
        for key, direction in reversed(sort or []):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return docs[: int(limit)] if limit else docs

    def insert_one(self, collection, doc):
        with self._lock:
            doc = copy.deepcopy(doc)
            doc.setdefault("_id", new_id())
            docs = self._collection(collection)
            if doc["_id"] in docs:
                raise StoreError(f"insert_one on {collection}: duplicate key {doc['_id']}")
            docs[doc["_id"]] = doc
            return str(doc["_id"])

    def update_one(self, collection, query, update, array_filters=None):
        with self._lock:
            for doc in self._scan(collection, query):
                _apply_update(doc, update, array_filters)
                return 1
        return 0

    def update_many(self, collection, query, update, array_filters=None):
        with self._lock:
            return sum(1 for doc in self._scan(collection, query) if _apply_update(doc, update, array_filters))

    def delete_one(self, collection, query):
        with self._lock:
            for doc in self._scan(collection, query):
                del self._collection(collection)[doc["_id"]]
                return 1
        return 0

    def ping(self):
        return True


@lru_cache
def get_store() -> EntityStore:
    settings = get_settings()
    if settings.STORE_BACKEND == "memory":
        return InMemoryEntityStore()
    client = MongoClient(settings.MONGO_URL, tz_aware=True, serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS)
    return MongoEntityStore(client, settings.MONGO_DB)
