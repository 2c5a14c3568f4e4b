import os
import re
from datetime import datetime
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def serialize_doc(doc):
    """Make a Mongo document JSON friendly: ``_id`` -> ``id``, ObjectIds and datetimes to strings."""
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_doc(v)
        else:
            out[k] = serialize_doc(v)
    return out


def to_object_id(value, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        name = f"{label} " if label else ""
        raise HTTPException(status_code=400, detail=f"Invalid {name}id")


def is_object_id(value) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", (text or "").lower()).strip("-")


def unique_slug(collection, base: str, exclude_id: Optional[ObjectId] = None) -> str:
    """Return ``base`` or the first free ``base-1``, ``base-2``, ... in ``collection``."""
    base = base or "item"
    candidate = base
    suffix = 0
    while True:
        query = {"slug": candidate}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if collection.find_one(query) is None:
            return candidate
        suffix += 1
        candidate = f"{base}-{suffix}"


def public_url(path: Optional[str]) -> Optional[str]:
    if not path or path.startswith(("http://", "https://")):
        return path
    return f"{PUBLIC_BASE_URL}{path}"
