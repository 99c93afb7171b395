"""
MongoDB Service - shared helpers for document collections.

Collections in this database:
1. users         - accounts, credentials, OTP and session state
2. companies     - company profiles
3. jobs          - job postings
4. applications  - job applications (with snapshots of the job)

Route handlers talk to pymongo collections directly; this module holds
the pieces every handler needs: ObjectId parsing, JSON serialization,
pagination, regex-safe search, "populate" of referenced documents and
best-effort counters.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back from the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ============================================================
# HELPER: Convert ObjectId to string for JSON serialization
# ============================================================

def serialize_doc(doc: Any) -> Any:
    """Convert MongoDB document (and nested ObjectIds) to JSON-serializable data."""
    if doc is None:
        return None
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, dict):
        return {key: serialize_doc(value) for key, value in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(item) for item in doc]
    return doc


def serialize_docs(docs: list) -> list:
    """Convert list of MongoDB documents to JSON-serializable list."""
    return [serialize_doc(doc) for doc in docs]


def is_object_id(value: Any) -> bool:
    return ObjectId.is_valid(str(value)) if value is not None else False


def parse_object_id(value: Any, what: str = "id") -> ObjectId:
    """Parse a client supplied id or raise a 400."""
    if isinstance(value, ObjectId):
        return value
    value = str(value or "").strip()
    if not ObjectId.is_valid(value):
        raise ApiError(f"Invalid {what}", 400)
    return ObjectId(value)


# ============================================================
# QUERY HELPERS
# ============================================================

def search_regex(q: Optional[str]) -> Optional[dict]:
    """Case-insensitive regex condition with special characters escaped."""
    q = (q or "").strip()
    if not q:
        return None
    return {"$regex": re.escape(q), "$options": "i"}


def parse_bool(raw: Optional[str], name: str) -> Optional[bool]:
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    raise ApiError(f"Invalid {name} value; use true or false", 400)


def parse_sort(requested: Optional[str], allowed: Iterable[str], default: str = "-created_at") -> list:
    """Turn '-created_at' style keys into a pymongo sort list, falling back to default."""
    key = (requested or default).strip()
    if key not in allowed:
        key = default
    if key.startswith("-"):
        return [(key[1:], DESCENDING)]
    return [(key, ASCENDING)]


def clean_str(value: Any) -> Optional[str]:
    """Trimmed string, with blank values stored as null."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def split_list(value: Any) -> List[str]:
    """Accept a list or a comma/newline separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = re.split(r"\r?\n|,", str(value))
    return [str(item).strip() for item in items if str(item).strip()]


@dataclass
class Pagination:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def _to_int(raw: Any, default: int) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def get_pagination(page: Optional[str] = None, limit: Optional[str] = None) -> Pagination:
    """
    FastAPI dependency - page/limit query params.
    Invalid numbers fall back to defaults, limit is capped by MAX_PAGE_LIMIT.
    """
    page_num = max(1, _to_int(page, 1))
    limit_num = max(1, _to_int(limit, DEFAULT_LIMIT))
    limit_num = min(limit_num, get_settings().max_page_limit)
    return Pagination(page=page_num, limit=limit_num)


def paginate(
    collection: Collection,
    filter_: dict,
    pagination: Pagination,
    projection: Optional[dict] = None,
    sort: Optional[list] = None,
) -> tuple:
    """
    Run a paginated find.

    Returns:
        (meta, docs) where meta is {total, page, limit, total_pages}
    """
    total = collection.count_documents(filter_)
    total_pages = max(1, -(-total // pagination.limit))
    cursor = collection.find(filter_, projection)
    if sort:
        cursor = cursor.sort(sort)
    docs = list(cursor.skip(pagination.skip).limit(pagination.limit))
    meta = {
        "total": total,
        "page": pagination.page,
        "limit": pagination.limit,
        "total_pages": total_pages,
    }
    return meta, docs


def populate(docs: List[dict], field: str, collection: Collection, fields: List[str]) -> List[dict]:
    """
    Replace the ObjectId stored in `field` with a small sub-document.

    One $in query per call. References that no longer resolve are left as ids.
    """
    ids = {doc.get(field) for doc in docs if isinstance(doc.get(field), ObjectId)}
    if not ids:
        return docs
    projection = {name: 1 for name in fields}
    found: Dict[ObjectId, dict] = {
        ref["_id"]: ref for ref in collection.find({"_id": {"$in": list(ids)}}, projection)
    }
    for doc in docs:
        ref_id = doc.get(field)
        if ref_id in found:
            doc[field] = found[ref_id]
    return docs


def populate_one(doc: Optional[dict], field: str, collection: Collection, fields: List[str]) -> Optional[dict]:
    if doc is None:
        return None
    return populate([doc], field, collection, fields)[0]


def bump_counter(collection: Collection, doc_id: ObjectId, field: str, amount: int) -> None:
    """
    Best-effort $inc for denormalized counters.
    Counters are advisory, so failures are logged and swallowed.
    """
    try:
        collection.update_one({"_id": doc_id}, {"$inc": {field: amount}})
    except PyMongoError as e:
        logger.warning("Counter update %s.%s failed for %s: %s", collection.name, field, doc_id, e)


def count_by_status(collection: Collection, match: dict, statuses: Iterable[str]) -> Dict[str, int]:
    """Aggregate counts per status, with every known status present."""
    stats = {status: 0 for status in statuses}
    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ]
    for row in collection.aggregate(pipeline):
        if row.get("_id") in stats:
            stats[row["_id"]] = row.get("count", 0)
    return stats
