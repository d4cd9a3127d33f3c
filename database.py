"""
MongoDB access for the FitTrack API.

Every collection stores plain documents. References between documents are
kept as string ids (``member_id``, ``session_id`` ...) and ``_id`` is the
driver's ObjectId.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError

logger = logging.getLogger(__name__)

# connect=False: the client only dials out on the first operation
client = MongoClient(DATABASE_URL, connect=False)
db = client[DATABASE_NAME]

PRIVATE_FIELDS = {'password_hash', 'active_key'}


def get_db() -> Database:
    return db


def to_object_id(value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid id: {value}")


def _public_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return to_public(value)
    if isinstance(value, list):
        return [_public_value(v) for v in value]
    return value


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Shape a stored document for the wire: ``_id`` -> ``id``, ids and dates as strings."""
    if doc is None:
        return None
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k in PRIVATE_FIELDS:
            continue
        if k == '_id':
            out['id'] = str(v)
            continue
        out[k] = _public_value(v)
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its ``_id``."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.utcnow()
    doc.setdefault('created_at', now)
    doc['updated_at'] = now
    res = database[collection_name].insert_one(doc)
    doc['_id'] = res.inserted_id
    return doc


def find_by_id(database: Database, collection_name: str, doc_id: Union[str, ObjectId], **extra: Any) -> Optional[Dict[str, Any]]:
    query: Dict[str, Any] = {'_id': to_object_id(doc_id)}
    query.update(extra)
    return database[collection_name].find_one(query)


def ensure_indexes(database: Database) -> None:
    """Create the unique keys the write paths rely on, plus the read indexes."""
    database['users'].create_index('email', unique=True)
    database['staff'].create_index('user_id', unique=True)

    # One confirmed booking per (member, session): confirmed bookings carry
    # "<member_id>:<session_id>", cancelled ones a key derived from their own id.
    database['bookings'].create_index('active_key', unique=True)
    database['bookings'].create_index([('member_id', ASCENDING), ('status', ASCENDING)])
    database['bookings'].create_index('session_id')

    # One check-in per member per calendar day.
    database['checkins'].create_index([('member_id', ASCENDING), ('day', ASCENDING)], unique=True)
    database['checkins'].create_index([('member_id', ASCENDING), ('check_in_time', DESCENDING)])

    database['sessions'].create_index([('trainer_id', ASCENDING), ('date', ASCENDING)])
    database['sessions'].create_index([('date', ASCENDING), ('status', ASCENDING)])
    database['workouts'].create_index([('member_id', ASCENDING), ('date', DESCENDING)])
    database['workouts'].create_index([('date', DESCENDING)])
    database['progress'].create_index([('member_id', ASCENDING), ('date', DESCENDING)])
    database['memberships'].create_index([('member_id', ASCENDING), ('created_at', DESCENDING)])
    database['payments'].create_index([('member_id', ASCENDING), ('payment_date', DESCENDING)])
    database['payments'].create_index([('payment_date', DESCENDING), ('status', ASCENDING)])
    database['workoutplans'].create_index('created_by')
    database['workoutplans'].create_index('category')
    logger.info("indexes ensured on %s", database.name)


def users_by_id(database: Database, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Fetch the referenced users in one query, keyed by string id."""
    oids = []
    for value in set(ids):
        try:
            oids.append(to_object_id(value))
        except ValidationError:
            continue
    if not oids:
        return {}
    return {str(u['_id']): u for u in database['users'].find({'_id': {'$in': oids}})}


def user_summary(user: Optional[Dict[str, Any]], *fields: str) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    out = {'id': str(user['_id'])}
    for f in fields or ('name', 'email'):
        out[f] = user.get(f)
    return out
