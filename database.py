"""
database.py
MongoDB persistence for accounts, deliveries, refill requests, notifications
and saved-liter overrides.

The store is built once from an explicit StoreConfig and handed to whatever
needs I/O; there is no module-level client.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from bson import ObjectId
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import ConcurrentModificationError, NotFoundError, StoreUnavailableError, ValidationError
from schemas import Account, DeliveryRecord, Notification, Plan, RefillRequest, RolloverOverride

logger = logging.getLogger(__name__)


class StoreConfig(BaseModel):
    url: str = Field(..., description="MongoDB connection string")
    name: str = Field(..., description="Database name")
    timeout_ms: int = Field(5000, gt=0, description="Per-operation timeout applied to every store call")

    @classmethod
    def from_env(cls) -> "StoreConfig":
        url = os.getenv("DATABASE_URL")
        name = os.getenv("DATABASE_NAME")
        if not url or not name:
            raise StoreUnavailableError("DATABASE_URL and DATABASE_NAME must be set")
        return cls(url=url, name=name, timeout_ms=int(os.getenv("DATABASE_TIMEOUT_MS", 5000)))


# Serialization helpers

def _is_hex_oid(id_str) -> bool:
    # ObjectId.is_valid also accepts any 12-character str as raw bytes
    return isinstance(id_str, str) and len(id_str) == 24 and ObjectId.is_valid(id_str)


def _oid(id_str: str) -> ObjectId:
    if not _is_hex_oid(id_str):
        raise ValidationError("Invalid id format")
    return ObjectId(id_str)


def _key(id_str: str):
    # Caller-supplied notification ids need not be ObjectIds
    return ObjectId(id_str) if _is_hex_oid(id_str) else id_str


def _to_bson(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        # BSON dates keep millisecond precision only
        return value.replace(microsecond=value.microsecond // 1000 * 1000)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def _from_bson(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_bson(v) for v in value]
    return value


def _from_doc(doc: dict) -> dict:
    out = _from_bson(dict(doc))
    out["id"] = out.pop("_id", None)
    return out


def _to_doc(model: BaseModel) -> dict:
    return _to_bson(model.model_dump(exclude={"id"}))


@contextmanager
def _guard(operation: str):
    try:
        yield
    except PyMongoError as e:
        logger.warning("Mongo %s failed: %s", operation, e)
        raise StoreUnavailableError(f"{operation} failed: {e}") from e


class MongoStore:
    """Keyed-record store backed by a pymongo Database."""

    def __init__(self, database):
        self.db = database
        self.ensure_indexes()

    @classmethod
    def from_config(cls, config: StoreConfig) -> "MongoStore":
        client = MongoClient(
            config.url,
            tz_aware=True,
            timeoutMS=config.timeout_ms,
            serverSelectionTimeoutMS=config.timeout_ms,
        )
        logger.info("Connected store to database %s", config.name)
        return cls(client[config.name])

    def ensure_indexes(self) -> None:
        with _guard("create indexes"):
            self.db["delivery"].create_index([("account_id", ASCENDING), ("date", ASCENDING)])
            self.db["refillrequest"].create_index([("account_id", ASCENDING), ("created_at", DESCENDING)])
            self.db["notification"].create_index([("account_id", ASCENDING), ("created_at", DESCENDING)])
            self.db["rolloveroverride"].create_index(
                [("account_id", ASCENDING), ("cycle", ASCENDING)], unique=True
            )

    # Generic helpers

    def create_document(self, collection_name: str, data) -> str:
        doc = _to_doc(data) if isinstance(data, BaseModel) else _to_bson(dict(data))
        doc.setdefault("created_at", datetime.now(timezone.utc).replace(tzinfo=None))
        with _guard(f"insert into {collection_name}"):
            result = self.db[collection_name].insert_one(doc)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None, sort: Optional[Iterable] = None) -> list:
        with _guard(f"read {collection_name}"):
            cursor = self.db[collection_name].find(_to_bson(filter_dict or {}))
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return [_from_doc(d) for d in cursor]

    # Accounts

    def create_account(self, account: Account) -> str:
        return self.create_document("account", account)

    def get_account(self, account_id: str) -> Account:
        with _guard("read account"):
            doc = self.db["account"].find_one({"_id": _oid(account_id)})
        if not doc:
            raise NotFoundError("Account", account_id)
        return Account.model_validate(_from_doc(doc))

    def update_plan(self, account_id: str, plan: Optional[Plan]) -> Account:
        with _guard("update plan"):
            result = self.db["account"].update_one(
                {"_id": _oid(account_id)},
                {"$set": {"plan": _to_doc(plan) if plan else None,
                          "updated_at": _to_bson(datetime.now(timezone.utc))}},
            )
        if result.matched_count == 0:
            raise NotFoundError("Account", account_id)
        return self.get_account(account_id)

    # Deliveries

    def add_delivery(self, record: DeliveryRecord) -> str:
        return self.create_document("delivery", record)

    def get_delivery(self, delivery_id: str) -> DeliveryRecord:
        with _guard("read delivery"):
            doc = self.db["delivery"].find_one({"_id": _oid(delivery_id)})
        if not doc:
            raise NotFoundError("Delivery", delivery_id)
        return DeliveryRecord.model_validate(_from_doc(doc))

    def set_delivery_status(self, delivery_id: str, expected_status: str, status: str,
                            proof_url: Optional[str] = None) -> DeliveryRecord:
        """Compare-and-set on status; a concurrent change raises ConcurrentModificationError."""
        changes = {"status": status, "updated_at": _to_bson(datetime.now(timezone.utc))}
        if proof_url is not None:
            changes["proof_url"] = proof_url
        oid = _oid(delivery_id)
        with _guard("update delivery status"):
            result = self.db["delivery"].update_one({"_id": oid, "status": expected_status}, {"$set": changes})
            exists = result.matched_count == 1 or self.db["delivery"].count_documents({"_id": oid}, limit=1)
        if not exists:
            raise NotFoundError("Delivery", delivery_id)
        if result.matched_count == 0:
            raise ConcurrentModificationError(delivery_id, expected_status, kind="Delivery")
        return self.get_delivery(delivery_id)

    def list_deliveries(self, account_id: str, start: datetime, end: datetime) -> list[DeliveryRecord]:
        docs = self.get_documents(
            "delivery",
            {"account_id": account_id, "date": {"$gte": start, "$lte": end}},
            sort=[("date", ASCENDING)],
        )
        return [DeliveryRecord.model_validate(d) for d in docs]

    # Refill requests

    def get_refill_request(self, request_id: str) -> RefillRequest:
        with _guard("read refill request"):
            doc = self.db["refillrequest"].find_one({"_id": _oid(request_id)})
        if not doc:
            raise NotFoundError("Refill request", request_id)
        return RefillRequest.model_validate(_from_doc(doc))

    def put_refill_request(self, request: RefillRequest, expected_version: Optional[int] = None) -> RefillRequest:
        """
        Insert when the request has no id yet. Otherwise write it only if the
        stored version still equals `expected_version`.
        """
        doc = _to_doc(request)
        if request.id is None:
            with _guard("insert refill request"):
                result = self.db["refillrequest"].insert_one(doc)
            return request.model_copy(update={"id": str(result.inserted_id)})

        oid = _oid(request.id)
        with _guard("update refill request"):
            if expected_version is None:
                self.db["refillrequest"].replace_one({"_id": oid}, doc, upsert=True)
                return request
            result = self.db["refillrequest"].update_one(
                {"_id": oid, "version": expected_version}, {"$set": doc}
            )
            if result.matched_count == 1:
                return request
            exists = self.db["refillrequest"].count_documents({"_id": oid}, limit=1)
        if not exists:
            raise NotFoundError("Refill request", request.id)
        raise ConcurrentModificationError(request.id, expected_version)

    def list_refill_requests(self, account_id: str, statuses: Optional[Iterable] = None,
                             limit: Optional[int] = None) -> list[RefillRequest]:
        query: dict = {"account_id": account_id}
        if statuses is not None:
            query["status"] = {"$in": list(statuses)}
        docs = self.get_documents("refillrequest", query, limit=limit, sort=[("created_at", DESCENDING)])
        return [RefillRequest.model_validate(d) for d in docs]

    # Notifications

    def put_notification(self, notification: Notification) -> str:
        doc = _to_doc(notification)
        if notification.id is None:
            with _guard("insert notification"):
                result = self.db["notification"].insert_one(doc)
            return str(result.inserted_id)
        with _guard("upsert notification"):
            self.db["notification"].update_one(
                {"_id": _key(notification.id)}, {"$setOnInsert": doc}, upsert=True
            )
        return notification.id

    def list_notifications(self, account_id: str, limit: int = 50) -> list[Notification]:
        docs = self.get_documents(
            "notification", {"account_id": account_id}, limit=limit, sort=[("created_at", DESCENDING)]
        )
        return [Notification.model_validate(d) for d in docs]

    # Saved-liter overrides

    def get_rollover_override(self, account_id: str, cycle: str) -> Optional[RolloverOverride]:
        with _guard("read rollover override"):
            doc = self.db["rolloveroverride"].find_one({"account_id": account_id, "cycle": cycle})
        return RolloverOverride.model_validate(_from_doc(doc)) if doc else None

    def put_rollover_override(self, override: RolloverOverride) -> RolloverOverride:
        """Insert-if-absent; returns whichever override is stored for the cycle."""
        key = {"account_id": override.account_id, "cycle": override.cycle}
        with _guard("save rollover override"):
            try:
                doc = self.db["rolloveroverride"].find_one_and_update(
                    key,
                    {"$setOnInsert": _to_doc(override)},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost an upsert race; the winner's value stands
                doc = self.db["rolloveroverride"].find_one(key)
        return RolloverOverride.model_validate(_from_doc(doc))
