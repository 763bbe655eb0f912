"""
Catalog stores: thin list/create/update/delete wrappers over one collection.

Reads fill every absent field with a default for its type (numbers 0,
strings "", lists []). Writes stamp ``updatedAt`` on every mutation and
``createdAt`` only on insert. Concurrent edits are not reconciled; the last
``$set`` wins.
"""

from typing import Callable, Dict, List, Optional
from uuid import uuid4

from records import parse_object_id, safe_float, safe_string, serialize_instant, utcnow


def normalize_category_name(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def normalize_product_size(entry) -> Optional[Dict]:
    if not isinstance(entry, dict):
        return None
    dimensions = safe_string(entry.get("dimensions"))
    if not dimensions:
        return None
    return {"dimensions": dimensions, "price": safe_float(entry.get("price"), 0.0)}


def normalize_frame_size(entry) -> Optional[Dict]:
    if not isinstance(entry, dict):
        return None
    dimensions = safe_string(entry.get("dimensions"))
    if not dimensions:
        return None
    return {
        "id": safe_string(entry.get("id")) or uuid4().hex,
        "dimensions": dimensions,
        "price": safe_float(entry.get("price"), 0.0),
        "description": safe_string(entry.get("description")),
    }


class DocumentStore:
    def __init__(
        self,
        collection,
        defaults: Dict[str, object],
        sort_field: Optional[str] = None,
        list_normalizers: Optional[Dict[str, Callable]] = None,
    ):
        self.collection = collection
        self.defaults = defaults
        self.sort_field = sort_field
        self.list_normalizers = list_normalizers or {}

    def coerce(self, field: str, value):
        default = self.defaults[field]
        if isinstance(default, list):
            if not isinstance(value, (list, tuple)):
                return []
            normalizer = self.list_normalizers.get(field)
            if normalizer is None:
                return list(value)
            return [entry for entry in map(normalizer, value) if entry is not None]
        if isinstance(default, bool):
            return bool(value)
        if isinstance(default, (int, float)):
            return safe_float(value, float(default))
        return safe_string(value)

    def clean_fields(self, payload: Optional[Dict]) -> Dict[str, object]:
        """Keep the known fields present in ``payload``, coerced to their types."""
        if not isinstance(payload, dict):
            return {}
        return {
            field: self.coerce(field, payload[field])
            for field in self.defaults
            if field in payload
        }

    def serialize(self, document) -> Dict[str, object]:
        serialized: Dict[str, object] = {"id": str(document.get("_id"))}
        for field, default in self.defaults.items():
            value = document.get(field)
            if value is None:
                serialized[field] = list(default) if isinstance(default, list) else default
            else:
                serialized[field] = self.coerce(field, value)
        serialized["createdAt"] = serialize_instant(document.get("createdAt"))
        serialized["updatedAt"] = serialize_instant(document.get("updatedAt"))
        return serialized

    def find_document(self, document_id) -> Optional[Dict]:
        object_id = parse_object_id(document_id)
        if object_id is None:
            return None
        return self.collection.find_one({"_id": object_id})

    def list_all(self) -> List[Dict[str, object]]:
        documents = [self.serialize(document) for document in self.collection.find()]
        if self.sort_field:
            documents.sort(key=lambda item: str(item.get(self.sort_field, "")).lower())
        return documents

    def get(self, document_id) -> Optional[Dict[str, object]]:
        document = self.find_document(document_id)
        return self.serialize(document) if document else None

    def create(self, fields: Dict[str, object]) -> Dict[str, object]:
        timestamp = utcnow()
        document = {**fields, "createdAt": timestamp, "updatedAt": timestamp}
        result = self.collection.insert_one(document)
        return self.serialize(self.collection.find_one({"_id": result.inserted_id}))

    def update(self, document_id, fields: Dict[str, object]) -> Optional[Dict[str, object]]:
        object_id = parse_object_id(document_id)
        if object_id is None:
            return None
        result = self.collection.update_one(
            {"_id": object_id}, {"$set": {**fields, "updatedAt": utcnow()}}
        )
        if not result.matched_count:
            return None
        return self.serialize(self.collection.find_one({"_id": object_id}))

    def delete(self, document_id) -> Optional[Dict]:
        """Delete and return the raw stored document, or None when absent."""
        document = self.find_document(document_id)
        if not document:
            return None
        self.collection.delete_one({"_id": document["_id"]})
        return document


class FrameStore(DocumentStore):
    def serialize(self, document) -> Dict[str, object]:
        serialized = super().serialize(document)
        # An empty image means create-then-upload was interrupted.
        serialized["imagePending"] = not serialized["image"]
        return serialized

    def pending_image_documents(self) -> List[Dict]:
        return list(self.collection.find({"$or": [{"image": ""}, {"image": None}]}))


def category_store(db) -> DocumentStore:
    return DocumentStore(
        db.categories, {"name": "", "description": ""}, sort_field="name"
    )


def product_store(db) -> DocumentStore:
    return DocumentStore(
        db.products,
        {
            "name": "",
            "description": "",
            "price": 0.0,
            "image": "",
            "category": "",
            "sizes": [],
        },
        list_normalizers={"sizes": normalize_product_size},
    )


def frame_store(db) -> FrameStore:
    return FrameStore(
        db.frames,
        {
            "name": "",
            "description": "",
            "price": 0.0,
            "image": "",
            "availableSizes": [],
        },
        sort_field="name",
        list_normalizers={"availableSizes": normalize_frame_size},
    )


def user_store(db) -> DocumentStore:
    return DocumentStore(
        db.users,
        {
            "email": "",
            "firstName": "",
            "lastName": "",
            "phoneNumber": "",
            "city": "",
            "district": "",
            "role": "",
        },
    )


USER_EDITABLE_FIELDS = ("email", "firstName", "lastName", "phoneNumber", "city", "district")
