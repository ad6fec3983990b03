"""
Database access

The MongoDB client is opened once at startup (see main.lifespan) and handed
to request handlers through FastAPI dependencies. Nothing connects at import
time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import NotFoundError
from settings import Settings
from unit_of_work import CompensatingUnitOfWork, TransactionalUnitOfWork, UnitOfWork

logger = logging.getLogger("storefront.database")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, label: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise NotFoundError(f"{label} not found")
    return ObjectId(value)


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return serialize_value(doc)


class Database:
    def __init__(self, client, name: str, use_transactions: bool = False):
        self.client = client
        self.name = name
        self.use_transactions = use_transactions

    @classmethod
    def connect(cls, settings: Settings) -> "Database":
        client = MongoClient(settings.database_url, tz_aware=True, serverSelectionTimeoutMS=5000)
        logger.info("Connected to MongoDB database %s", settings.database_name)
        return cls(client, settings.database_name, settings.use_transactions)

    @property
    def db(self):
        return self.client[self.name]

    def __getitem__(self, collection: str):
        return self.db[collection]

    def unit_of_work(self) -> UnitOfWork:
        if self.use_transactions:
            return TransactionalUnitOfWork(self.client)
        return CompensatingUnitOfWork()

    def ensure_indexes(self) -> None:
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["admin"].create_index([("email", ASCENDING)], unique=True)
        self.db["cart"].create_index([("user_id", ASCENDING)], unique=True)
        self.db["wishlist"].create_index([("user_id", ASCENDING)], unique=True)
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])

    def create_document(self, collection: str, data: Union[BaseModel, Dict[str, Any]], **options) -> str:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        doc = dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        result = self.db[collection].insert_one(doc, **options)
        return str(result.inserted_id)

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def close(self) -> None:
        self.client.close()


def paginate(collection, filt: dict, page: int, limit: int, sort=None) -> Dict[str, Any]:
    """Run a paged find and return the listing envelope used by every list endpoint."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = collection.count_documents(filt)
    cursor = collection.find(filt).sort(sort or [("created_at", -1), ("_id", -1)])
    items = list(cursor.skip((page - 1) * limit).limit(limit))
    return {
        "items": items,
        "total_count": total,
        "page_count": (total + limit - 1) // limit,
        "current_page": page,
    }
