"""
MongoDB access for the finance API.

Every record query goes through a filter that carries both the record id and
the owner id, so "does not exist" and "belongs to someone else" are the same
answer.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import ConflictError, NotFoundError, UnexpectedError
from schemas import Attachment, User

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_database(settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    return client[settings.database_name]


def init_indexes(db: Database) -> None:
    db["users"].create_index("username", unique=True)
    for name in ("incomes", "expenses"):
        db[name].create_index([("createdBy", ASCENDING), ("createdAt", DESCENDING)])


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(value):
    """Make a Mongo document JSON friendly (ObjectId -> str, datetime -> ISO)."""
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


@contextmanager
def storage_errors(operation: str, collection: str):
    try:
        yield
    except PyMongoError as exc:
        logger.error("storage_failure", operation=operation, collection=collection, error=str(exc), exc_info=True)
        raise UnexpectedError(str(exc)) from exc


class UserStore:
    def __init__(self, db: Database):
        self.collection: Collection = db["users"]

    def find_by_username(self, username: str) -> Optional[dict]:
        with storage_errors("find_user", self.collection.name):
            return self.collection.find_one({"username": username})

    def find_by_id(self, user_id) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        with storage_errors("find_user", self.collection.name):
            return self.collection.find_one({"_id": oid})

    def create(self, user: User) -> str:
        data = user.model_dump(by_alias=True)
        data["createdAt"] = utcnow()
        with storage_errors("create_user", self.collection.name):
            try:
                inserted_id = self.collection.insert_one(data).inserted_id
            except DuplicateKeyError:
                raise ConflictError("User already exists")
        return str(inserted_id)

    def set_password_hash(self, user_id, password_hash: str) -> bool:
        with storage_errors("update_user", self.collection.name):
            result = self.collection.update_one(
                {"_id": to_object_id(user_id)},
                {"$set": {"passwordHash": password_hash, "updatedAt": utcnow()}},
            )
        return result.matched_count == 1


class RecordStore:
    """
    User-owned records in one collection.

    ``attachment_field`` names where file references live. With
    ``append_attachments`` the field is a list that grows on update (expenses);
    otherwise it holds a single reference that a new upload replaces (incomes).
    """

    def __init__(
        self,
        db: Database,
        collection: str,
        attachment_field: str,
        append_attachments: bool = False,
        not_found_message: str = "Record not found",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.collection: Collection = db[collection]
        self.attachment_field = attachment_field
        self.append_attachments = append_attachments
        self.not_found_message = not_found_message
        self._clock = clock

    def _owned(self, owner_id, record_id) -> dict:
        oid = to_object_id(record_id)
        if oid is None:
            raise NotFoundError(self.not_found_message)
        return {"_id": oid, "createdBy": to_object_id(owner_id)}

    def _initial_attachments(self, attachments: List[Attachment]):
        refs = [a.model_dump() for a in attachments]
        if self.append_attachments:
            return refs
        return refs[0] if refs else None

    def create(self, owner_id, payload: dict, attachments: Optional[List[Attachment]] = None) -> dict:
        now = self._clock()
        doc = dict(payload)
        doc[self.attachment_field] = self._initial_attachments(attachments or [])
        doc.update(createdBy=to_object_id(owner_id), createdAt=now, updatedAt=now)
        with storage_errors("create", self.collection.name):
            doc["_id"] = self.collection.insert_one(doc).inserted_id
        logger.info("record_created", collection=self.collection.name, record_id=str(doc["_id"]), owner=str(owner_id))
        return doc

    def list(self, owner_id) -> List[dict]:
        with storage_errors("list", self.collection.name):
            cursor = self.collection.find({"createdBy": to_object_id(owner_id)})
            return list(cursor.sort([("createdAt", DESCENDING), ("_id", DESCENDING)]))

    def get(self, owner_id, record_id) -> dict:
        query = self._owned(owner_id, record_id)
        with storage_errors("get", self.collection.name):
            doc = self.collection.find_one(query)
        if doc is None:
            raise NotFoundError(self.not_found_message)
        return doc

    def update(self, owner_id, record_id, payload: dict, attachments: Optional[List[Attachment]] = None) -> dict:
        query = self._owned(owner_id, record_id)
        changes = {k: v for k, v in payload.items() if k not in ("_id", "createdBy", "createdAt")}
        changes["updatedAt"] = self._clock()
        update = {"$set": changes}
        refs = [a.model_dump() for a in attachments or []]
        if refs:
            if self.append_attachments:
                update["$push"] = {self.attachment_field: {"$each": refs}}
            else:
                changes[self.attachment_field] = refs[0]

        with storage_errors("update", self.collection.name):
            doc = self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        if doc is None:
            raise NotFoundError(self.not_found_message)
        logger.info("record_updated", collection=self.collection.name, record_id=str(doc["_id"]), owner=str(owner_id))
        return doc

    def delete(self, owner_id, record_id) -> None:
        query = self._owned(owner_id, record_id)
        with storage_errors("delete", self.collection.name):
            result = self.collection.delete_one(query)
        if result.deleted_count == 0:
            raise NotFoundError(self.not_found_message)
        logger.info("record_deleted", collection=self.collection.name, record_id=str(record_id), owner=str(owner_id))
