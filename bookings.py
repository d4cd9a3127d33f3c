"""
Session scheduling, availability and booking.

Capacity is ``max_spots`` per session. The stored ``booked_spots`` counter
mirrors the number of confirmed bookings: it is only moved by ``book`` and
``cancel``, and ``book`` increments it with a conditional update so two
concurrent bookers cannot both take the last spot. Duplicate bookings are
rejected by the unique ``active_key`` index on the bookings collection.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import (create_document, find_by_id, to_object_id, to_public,
                      user_summary, users_by_id)
from errors import ConflictError, NotFoundError, ValidationError
from schemas import Bookings, SessionCreate, Sessions, SessionUpdate, naive_utc
from security import CurrentUser

logger = logging.getLogger(__name__)


def active_key(member_id: str, session_id: str) -> str:
    return f"{member_id}:{session_id}"


def released_key(booking_id: Any, status: str) -> str:
    return f"{status}:{booking_id}"


def confirmed_count(db: Database, session_id: str) -> int:
    return db['bookings'].count_documents({'session_id': session_id, 'status': 'confirmed'})


def _owned_session_query(user: CurrentUser, session_id: str) -> Dict[str, Any]:
    query: Dict[str, Any] = {'_id': to_object_id(session_id)}
    if not user.is_admin:
        query['trainer_id'] = user.id
    return query


def _with_trainer(session: Dict[str, Any], trainers: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    item = to_public(session)
    item['trainer'] = user_summary(trainers.get(session.get('trainer_id')))
    return item


def list_available(db: Database, after: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Scheduled sessions from ``after`` (default now) on, with live spot counts."""
    cutoff = naive_utc(after) if after else datetime.utcnow()
    sessions = list(
        db['sessions'].find({'status': 'scheduled', 'date': {'$gte': cutoff}})
        .sort([('date', ASCENDING), ('time', ASCENDING)])
    )
    trainers = users_by_id(db, (s['trainer_id'] for s in sessions))
    items = []
    for s in sessions:
        booked = confirmed_count(db, str(s['_id']))
        item = _with_trainer(s, trainers)
        item['booked_spots'] = booked
        item['spots'] = s['max_spots'] - booked
        items.append(item)
    return items


def book(db: Database, member_id: str, session_id: str) -> Dict[str, Any]:
    session = find_by_id(db, 'sessions', session_id)
    if not session:
        raise NotFoundError('Session not found')
    if session.get('status') != 'scheduled':
        raise ConflictError('Session is not open for booking')
    sid = str(session['_id'])
    key = active_key(member_id, sid)

    if db['bookings'].find_one({'active_key': key}):
        raise ConflictError('You have already booked this session')
    if confirmed_count(db, sid) >= session['max_spots']:
        raise ConflictError('Session is fully booked')

    try:
        booking = create_document(db, 'bookings', Bookings(member_id=member_id, session_id=sid, active_key=key))
    except DuplicateKeyError:
        raise ConflictError('You have already booked this session')

    updated = db['sessions'].find_one_and_update(
        {'_id': session['_id'], 'booked_spots': {'$lt': session['max_spots']}},
        {
            '$inc': {'booked_spots': 1},
            '$push': {'booking_ids': str(booking['_id'])},
            '$set': {'updated_at': datetime.utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # lost the race for the last spot
        db['bookings'].delete_one({'_id': booking['_id']})
        raise ConflictError('Session is fully booked')

    logger.info("member %s booked session %s (%d/%d)", member_id, sid, updated['booked_spots'], updated['max_spots'])
    return booking


def cancel(db: Database, member_id: str, booking_id: str) -> Dict[str, Any]:
    oid = to_object_id(booking_id)
    booking = db['bookings'].find_one_and_update(
        {'_id': oid, 'member_id': member_id, 'status': 'confirmed'},
        {'$set': {
            'status': 'cancelled',
            'active_key': released_key(oid, 'cancelled'),
            'updated_at': datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not booking:
        raise NotFoundError('Booking not found')

    db['sessions'].update_one(
        {'_id': to_object_id(booking['session_id']), 'booked_spots': {'$gt': 0}},
        {'$inc': {'booked_spots': -1}, '$set': {'updated_at': datetime.utcnow()}},
    )
    logger.info("member %s cancelled booking %s", member_id, booking_id)
    return booking


def embed_sessions(db: Database, bookings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Public booking dicts with their session (and its trainer) embedded."""
    session_ids = {b['session_id'] for b in bookings}
    sessions = {
        str(s['_id']): s
        for s in db['sessions'].find({'_id': {'$in': [to_object_id(i) for i in session_ids]}})
    }
    trainers = users_by_id(db, (s['trainer_id'] for s in sessions.values()))
    items = []
    for b in bookings:
        item = to_public(b)
        session = sessions.get(b['session_id'])
        item['session'] = _with_trainer(session, trainers) if session else None
        items.append(item)
    return items


def my_bookings(db: Database, member_id: str) -> List[Dict[str, Any]]:
    bookings = list(db['bookings'].find({'member_id': member_id}).sort('created_at', DESCENDING))
    return embed_sessions(db, bookings)


# ---------- Trainer side ----------

def trainer_sessions(db: Database, user: CurrentUser, day: Optional[date] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if not user.is_admin:
        query['trainer_id'] = user.id
    if day:
        start = datetime.combine(day, datetime.min.time())
        query['date'] = {'$gte': start, '$lt': start + timedelta(days=1)}
    sessions = list(db['sessions'].find(query).sort([('date', ASCENDING), ('time', ASCENDING)]))
    trainers = users_by_id(db, (s['trainer_id'] for s in sessions))

    items = []
    for s in sessions:
        bookings = list(db['bookings'].find({'session_id': str(s['_id']), 'status': 'confirmed'}))
        members = users_by_id(db, (b['member_id'] for b in bookings))
        item = _with_trainer(s, trainers)
        item['bookings'] = []
        for b in bookings:
            public = to_public(b)
            public['member'] = user_summary(members.get(b['member_id']))
            item['bookings'].append(public)
        items.append(item)
    return items


def create_session(db: Database, user: CurrentUser, payload: SessionCreate) -> Dict[str, Any]:
    data = payload.model_dump(exclude_none=True)
    doc = create_document(db, 'sessions', Sessions(trainer_id=user.id, booked_spots=0, **data))
    logger.info("trainer %s scheduled session %s", user.id, doc['_id'])
    return doc


def update_session(db: Database, user: CurrentUser, session_id: str, payload: SessionUpdate) -> Dict[str, Any]:
    query = _owned_session_query(user, session_id)
    session = db['sessions'].find_one(query)
    if not session:
        raise NotFoundError('Session not found')

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if 'date' in changes:
        changes['date'] = naive_utc(changes['date'])
    if 'max_spots' in changes:
        booked = confirmed_count(db, str(session['_id']))
        if changes['max_spots'] < booked:
            raise ValidationError(f"max_spots cannot be lower than the {booked} confirmed bookings")
    changes['updated_at'] = datetime.utcnow()

    updated = db['sessions'].find_one_and_update(query, {'$set': changes}, return_document=ReturnDocument.AFTER)
    if updated is None:
        raise NotFoundError('Session not found')

    if changes.get('status') == 'completed':
        _complete_bookings(db, str(updated['_id']))
        updated = db['sessions'].find_one({'_id': updated['_id']})
    return updated


def _complete_bookings(db: Database, session_id: str) -> None:
    released = 0
    for b in db['bookings'].find({'session_id': session_id, 'status': 'confirmed'}, {'_id': 1}):
        res = db['bookings'].update_one(
            {'_id': b['_id'], 'status': 'confirmed'},
            {'$set': {
                'status': 'completed',
                'active_key': released_key(b['_id'], 'completed'),
                'updated_at': datetime.utcnow(),
            }},
        )
        released += res.modified_count
    if released:
        # booked_spots counts confirmed bookings only
        oid = to_object_id(session_id)
        res = db['sessions'].update_one(
            {'_id': oid, 'booked_spots': {'$gte': released}},
            {'$inc': {'booked_spots': -released}},
        )
        if res.matched_count == 0:
            db['sessions'].update_one({'_id': oid}, {'$set': {'booked_spots': 0}})


def delete_session(db: Database, user: CurrentUser, session_id: str) -> None:
    query = _owned_session_query(user, session_id)
    res = db['sessions'].delete_one(query)
    if res.deleted_count == 0:
        raise NotFoundError('Session not found')
    db['bookings'].delete_many({'session_id': str(query['_id'])})
    logger.info("session %s deleted by %s", session_id, user.id)
