from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from buteco.errors import ConflictError, NotFoundError
from buteco.models import DAILY_AGGREGATES, TABLES, USERS
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)

# collections whose records carry an updated_at stamp
TRACKS_UPDATES = {TABLES, DAILY_AGGREGATES}


def oid(id_str: str) -> ObjectId | None:
    """parse a string id; None if it is not a valid ObjectId"""
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def oid_str(doc: dict) -> dict:
    doc["id"] = str(doc.pop("_id"))
    return doc


def _encode(data: dict) -> dict:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


class MongoStore(EntityStore):
    """
    remote document-store backend

    sub-collections live in their own collection named ``<parent>.<child>``
    (eg. ``tables.line_items``) with a ``parent_id`` field pointing back.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.now):
        super().__init__(clock)
        self.db = db
        self.db[USERS].create_index([("name", ASCENDING)], unique=True)
        self.db[DAILY_AGGREGATES].create_index([("date", ASCENDING)], unique=True)

    @classmethod
    def from_url(cls, url: str, name: str, **kwargs) -> "MongoStore":
        client = MongoClient(url)
        logger.debug("connecting to mongo database %s", name)
        return cls(client[name], **kwargs)

    @staticmethod
    def _child(collection: str, child: str) -> str:
        return f"{collection}.{child}"

    def _stamp(self, collection: str) -> dict:
        if collection in TRACKS_UPDATES:
            return {"updated_at": self.clock()}
        return {}

    # generic helpers
    def _find(self, name: str, query: dict) -> list[dict]:
        return [oid_str(d) for d in self.db[name].find(_encode(query)).sort("_id", ASCENDING)]

    def _find_one(self, name: str, id: str, extra: dict | None = None) -> dict:
        key = oid(id)
        doc = self.db[name].find_one({"_id": key, **(extra or {})}) if key else None
        if not doc:
            raise NotFoundError(f"{name} record {id} not found")
        return oid_str(doc)

    def _insert(self, name: str, data: dict) -> str:
        doc = {**_encode(data), "created_at": self.clock()}
        try:
            return str(self.db[name].insert_one(doc).inserted_id)
        except DuplicateKeyError as e:
            raise ConflictError(f"duplicate {name} record") from e

    def _update(self, name: str, id: str, update: dict, extra: dict | None = None):
        key = oid(id)
        res = self.db[name].update_one({"_id": key, **(extra or {})}, update) if key else None
        if res is None or res.matched_count == 0:
            raise NotFoundError(f"{name} record {id} not found")

    def _set(self, name: str, changes: dict) -> dict:
        return {"$set": {**_encode(changes), **self._stamp(name)}}

    # top-level collections
    def get(self, collection, id):
        return self._find_one(collection, id)

    def list(self, collection, where=None):
        return self._find(collection, where or {})

    def count(self, collection, where=None):
        return self.db[collection].count_documents(_encode(where or {}))

    def create(self, collection, data):
        return self._insert(collection, data)

    def update(self, collection, id, changes):
        self._update(collection, id, self._set(collection, changes))

    def increment(self, collection, id, deltas):
        update = {"$inc": dict(deltas)}
        stamp = self._stamp(collection)
        if stamp:
            update["$set"] = stamp
        self._update(collection, id, update)

    def delete(self, collection, id):
        key = oid(id)
        if key:
            self.db[collection].delete_one({"_id": key})

    # sub-collections
    def get_child(self, collection, parent_id, child, id):
        return self._find_one(self._child(collection, child), id, {"parent_id": parent_id})

    def list_children(self, collection, parent_id, child, where=None):
        return self._find(self._child(collection, child), {**(where or {}), "parent_id": parent_id})

    def create_child(self, collection, parent_id, child, data):
        self.get(collection, parent_id)
        return self._insert(self._child(collection, child), {**data, "parent_id": parent_id})

    def update_child(self, collection, parent_id, child, id, changes):
        name = self._child(collection, child)
        self._update(name, id, {"$set": _encode(changes)}, {"parent_id": parent_id})

    def delete_child(self, collection, parent_id, child, id):
        key = oid(id)
        if key:
            self.db[self._child(collection, child)].delete_one({"_id": key, "parent_id": parent_id})

    def close(self):
        self.db.client.close()
