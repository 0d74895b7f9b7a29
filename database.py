"""
Database access

MongoDB connection plus a small record API on top of it. Every collection is
reached the same way: list (filtered, sorted, paged), get one, create, update,
delete, optionally inlining related records ("expand").
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

from filters import Expr, compile_filter, page_count, parse_sort
from schemas import HIDDEN_FIELDS, RELATIONS

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

DEFAULT_PER_PAGE = 30


class RecordNotFound(LookupError):
    def __init__(self, collection: str, record_id: Any):
        super().__init__(f"{collection} record not found: {record_id}")
        self.collection = collection
        self.record_id = record_id


class ListResult(BaseModel):
    items: List[dict]
    page: int
    per_page: int
    total_items: int
    total_pages: int


def utcnow() -> datetime:
    # naive UTC, the form pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_record(doc: dict) -> dict:
    record = {}
    for key, value in doc.items():
        if key == "_id":
            record["id"] = str(value)
        elif isinstance(value, ObjectId):
            record[key] = str(value)
        else:
            record[key] = value
    return record


def _as_dict(data: Union[BaseModel, dict], **dump_options) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(**dump_options)
    return dict(data)


def _expand_tree(paths: Iterable[str]) -> Dict[str, List[str]]:
    """['product.store', 'product.category', 'user'] -> {'product': ['store', 'category'], 'user': []}"""
    tree: Dict[str, List[str]] = {}
    for path in paths:
        head, _, tail = path.strip().partition(".")
        if not head:
            continue
        tree.setdefault(head, [])
        if tail:
            tree[head].append(tail)
    return tree


class RecordStore:
    """Record API over a pymongo database."""

    def __init__(self, database, relations: Optional[dict] = None):
        self.db = database
        self.relations = RELATIONS if relations is None else relations

    def _object_id(self, collection: str, record_id: Any) -> ObjectId:
        if isinstance(record_id, ObjectId):
            return record_id
        if not record_id or not ObjectId.is_valid(str(record_id)):
            raise RecordNotFound(collection, record_id)
        return ObjectId(str(record_id))

    def _find_by_id(self, collection: str, record_id: Any) -> Optional[dict]:
        try:
            oid = self._object_id(collection, record_id)
        except RecordNotFound:
            return None
        doc = self.db[collection].find_one({"_id": oid})
        return to_record(doc) if doc else None

    def _find_related(self, collection: str, record_id: Any) -> Optional[dict]:
        record = self._find_by_id(collection, record_id)
        if record is not None:
            for field in HIDDEN_FIELDS.get(collection, []):
                record.pop(field, None)
        return record

    def _expand(self, collection: str, record: dict, expand: Optional[Iterable[str]]) -> dict:
        if not expand:
            return record
        relations = self.relations.get(collection, {})
        expanded = {}
        for name, nested in _expand_tree(expand).items():
            if name not in relations:
                continue
            field, target = relations[name]
            value = record.get(field)
            if not value:
                continue
            if isinstance(value, list):
                related = [r for r in (self._find_related(target, v) for v in value) if r is not None]
                expanded[name] = [self._expand(target, r, nested) for r in related]
            else:
                related = self._find_related(target, value)
                if related is not None:
                    expanded[name] = self._expand(target, related, nested)
        if expanded:
            record["expand"] = expanded
        return record

    def _cursor(self, collection: str, filter: Optional[Expr], sort: Optional[str]):
        cursor = self.db[collection].find(compile_filter(filter))
        sort_spec = parse_sort(sort)
        if not any(field == "_id" for field, _ in sort_spec):
            # stable order for records that tie on the requested keys
            sort_spec.append(("_id", 1))
        return cursor.sort(sort_spec)

    # -----------------------------
    # Reads
    # -----------------------------

    def get_list(
        self,
        collection: str,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        filter: Optional[Expr] = None,
        sort: Optional[str] = None,
        expand: Optional[Iterable[str]] = None,
    ) -> ListResult:
        page = max(int(page or 1), 1)
        per_page = max(int(per_page or DEFAULT_PER_PAGE), 1)
        total = self.db[collection].count_documents(compile_filter(filter))
        cursor = self._cursor(collection, filter, sort).skip((page - 1) * per_page).limit(per_page)
        items = [self._expand(collection, to_record(doc), expand) for doc in cursor]
        return ListResult(
            items=items,
            page=page,
            per_page=per_page,
            total_items=total,
            total_pages=page_count(total, per_page),
        )

    def get_full_list(
        self,
        collection: str,
        filter: Optional[Expr] = None,
        sort: Optional[str] = None,
        expand: Optional[Iterable[str]] = None,
    ) -> List[dict]:
        return [self._expand(collection, to_record(doc), expand) for doc in self._cursor(collection, filter, sort)]

    def get_first(
        self,
        collection: str,
        filter: Optional[Expr] = None,
        sort: Optional[str] = None,
        expand: Optional[Iterable[str]] = None,
    ) -> Optional[dict]:
        for doc in self._cursor(collection, filter, sort).limit(1):
            return self._expand(collection, to_record(doc), expand)
        return None

    def get_one(self, collection: str, record_id: Any, expand: Optional[Iterable[str]] = None) -> dict:
        record = self._find_by_id(collection, record_id)
        if record is None:
            raise RecordNotFound(collection, record_id)
        return self._expand(collection, record, expand)

    def count(self, collection: str, filter: Optional[Expr] = None) -> int:
        return self.db[collection].count_documents(compile_filter(filter))

    # -----------------------------
    # Writes
    # -----------------------------

    def create(self, collection: str, data: Union[BaseModel, dict]) -> dict:
        now = utcnow()
        doc = {**_as_dict(data), "created_at": now, "updated_at": now}
        self.db[collection].insert_one(doc)
        return to_record(doc)

    def update(self, collection: str, record_id: Any, data: Union[BaseModel, dict]) -> dict:
        oid = self._object_id(collection, record_id)
        changes = {**_as_dict(data, exclude_unset=True), "updated_at": utcnow()}
        changes.pop("id", None)
        doc = self.db[collection].find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise RecordNotFound(collection, record_id)
        return to_record(doc)

    def increment(self, collection: str, record_id: Any, field: str, amount: int) -> dict:
        oid = self._object_id(collection, record_id)
        doc = self.db[collection].find_one_and_update(
            {"_id": oid},
            {"$inc": {field: amount}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise RecordNotFound(collection, record_id)
        return to_record(doc)

    def delete(self, collection: str, record_id: Any) -> None:
        oid = self._object_id(collection, record_id)
        res = self.db[collection].delete_one({"_id": oid})
        if res.deleted_count == 0:
            raise RecordNotFound(collection, record_id)


def get_records() -> RecordStore:
    if db is None:
        raise HTTPException(500, "Database not configured")
    return RecordStore(db)
