"""
Derived statistics: day streaks and the read-only rollups behind the
dashboards. Nothing here writes; every figure reflects the collections at
query time. Calendar days are UTC days.
"""
import calendar
from datetime import date, datetime, timedelta
from itertools import islice
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

import config
from bookings import embed_sessions
from database import users_by_id
from security import CurrentUser

PROGRESS_METRICS = ('weight', 'body_fat', 'muscle')


def today_utc_date() -> date:
    return datetime.utcnow().date()


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def start_of_week(day: date) -> date:
    """Weeks start on Sunday."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def month_bounds(day: date) -> Tuple[datetime, datetime]:
    first = day.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return datetime.combine(first, datetime.min.time()), datetime.combine(next_month, datetime.min.time())


def months_before(moment: datetime, months: int) -> datetime:
    year, month = moment.year, moment.month - months
    while month <= 0:
        month += 12
        year -= 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# ---------- Streaks ----------

def compute_streak(timestamps: Iterable[datetime], today: date, window: Optional[int] = None) -> int:
    """Consecutive days, ending today, that have at least one event.

    ``timestamps`` are newest first; only the first ``window`` of them are
    looked at, so the result never exceeds ``window``. No event today means
    a streak of 0.
    """
    if window is None:
        window = config.STREAK_WINDOW
    days = {ts.date() for ts in islice(timestamps, window)}
    streak = 0
    while today - timedelta(days=streak) in days:
        streak += 1
    return streak


def _recent_times(db: Database, collection: str, field: str, member_id: str, window: int) -> List[datetime]:
    cursor = (
        db[collection].find({'member_id': member_id}, {field: 1})
        .sort(field, DESCENDING)
        .limit(window)
    )
    return [doc[field] for doc in cursor]


def checkin_streak(db: Database, member_id: str, today: Optional[date] = None, window: Optional[int] = None) -> int:
    if window is None:
        window = config.STREAK_WINDOW
    times = _recent_times(db, 'checkins', 'check_in_time', member_id, window)
    return compute_streak(times, today or today_utc_date(), window)


def workout_streak(db: Database, member_id: str, today: Optional[date] = None, window: Optional[int] = None) -> int:
    if window is None:
        window = config.STREAK_WINDOW
    times = _recent_times(db, 'workouts', 'date', member_id, window)
    return compute_streak(times, today or today_utc_date(), window)


# ---------- Admin rollups ----------

def revenue_between(db: Database, start: datetime, end: datetime) -> float:
    """Sum of completed payments with payment_date in [start, end)."""
    rows = list(db['payments'].aggregate([
        {'$match': {'status': 'completed', 'payment_date': {'$gte': start, '$lt': end}}},
        {'$group': {'_id': None, 'total': {'$sum': '$amount'}}},
    ]))
    return rows[0]['total'] if rows else 0


def dashboard(db: Database, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    today_start, tomorrow = day_bounds(now.date())
    _, next_month = month_bounds(now.date())

    return {
        'active_members': db['memberships'].count_documents({'status': 'active'}),
        'expiring_this_month': db['memberships'].count_documents({
            'status': 'active',
            'end_date': {'$gte': today_start, '$lt': next_month},
        }),
        'today_revenue': revenue_between(db, today_start, tomorrow),
        'today_check_ins': db['checkins'].count_documents({
            'check_in_time': {'$gte': today_start, '$lt': tomorrow},
        }),
    }


def monthly_revenue(db: Database, months: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    since = months_before(now or datetime.utcnow(), months)
    rows = db['payments'].aggregate([
        {'$match': {'status': 'completed', 'payment_date': {'$gte': since}}},
        {'$group': {
            '_id': {'year': {'$year': '$payment_date'}, 'month': {'$month': '$payment_date'}},
            'revenue': {'$sum': '$amount'},
            'count': {'$sum': 1},
        }},
    ])
    trend = [
        {'year': r['_id']['year'], 'month': r['_id']['month'], 'revenue': r['revenue'], 'count': r['count']}
        for r in rows
    ]
    trend.sort(key=lambda r: (r['year'], r['month']))
    return trend


def plan_distribution(db: Database) -> List[Dict[str, Any]]:
    rows = db['memberships'].aggregate([
        {'$group': {'_id': '$plan_type', 'count': {'$sum': 1}}},
    ])
    dist = [{'plan_type': r['_id'], 'count': r['count']} for r in rows]
    dist.sort(key=lambda r: str(r['plan_type']))
    return dist


def revenue_analytics(db: Database, months: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    months = months or config.REVENUE_MONTHS_DEFAULT
    return {
        'monthly_revenue': monthly_revenue(db, months, now),
        'plan_distribution': plan_distribution(db),
    }


# ---------- Member side ----------

def workout_stats(db: Database, member_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    today = (now or datetime.utcnow()).date()
    week_start, _ = day_bounds(start_of_week(today))
    rows = list(db['workouts'].aggregate([
        {'$match': {'member_id': member_id}},
        {'$group': {'_id': None, 'total': {'$sum': '$total_volume'}}},
    ]))
    return {
        'workouts_this_week': db['workouts'].count_documents({'member_id': member_id, 'date': {'$gte': week_start}}),
        'total_workouts': db['workouts'].count_documents({'member_id': member_id}),
        'total_volume': rows[0]['total'] if rows else 0,
        'streak': workout_streak(db, member_id, today),
    }


def progress_stats(db: Database, member_id: str) -> Dict[str, Any]:
    """Current, starting and change for each tracked body metric."""
    entries = list(db['progress'].find({'member_id': member_id}).sort('date', DESCENDING))
    stats: Dict[str, Any] = {}
    latest = entries[0] if entries else {}
    earliest = entries[-1] if entries else {}
    for metric in PROGRESS_METRICS:
        current, start = latest.get(metric), earliest.get(metric)
        stats[metric] = {
            'current': current,
            'start': start,
            'change': current - start if current is not None and start is not None else None,
        }
    return stats


def member_home(db: Database, member_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    today = now.date()
    today_start, tomorrow = day_bounds(today)

    membership = db['memberships'].find_one({'member_id': member_id}, sort=[('created_at', DESCENDING)])
    days_remaining = 0
    if membership and membership.get('end_date'):
        days_remaining = (membership['end_date'].date() - today).days

    week_start, _ = day_bounds(start_of_week(today))
    todays_workout = db['workouts'].find_one({
        'member_id': member_id,
        'date': {'$gte': today_start, '$lt': tomorrow},
    })

    upcoming = list(
        db['bookings'].find({'member_id': member_id, 'status': 'confirmed'})
        .sort('created_at', ASCENDING)
        .limit(5)
    )
    upcoming_sessions = []
    for b in embed_sessions(db, upcoming):
        session = b.get('session') or {}
        trainer = session.get('trainer') or {}
        upcoming_sessions.append({
            'id': b['id'],
            'title': session.get('type', 'Session'),
            'time': session.get('time', ''),
            'trainer': trainer.get('name', 'Trainer'),
            'date': session.get('date'),
        })

    return {
        'membership': {
            'plan': membership.get('plan_type') if membership else 'N/A',
            'start_date': membership['start_date'].isoformat() if membership else None,
            'end_date': membership['end_date'].isoformat() if membership else None,
            'days_remaining': days_remaining,
            'status': membership.get('status', 'expired') if membership else 'expired',
        },
        'today_stats': {
            'streak': checkin_streak(db, member_id, today),
            'workouts_this_week': db['workouts'].count_documents({
                'member_id': member_id, 'date': {'$gte': week_start},
            }),
            'calories_burned': (todays_workout or {}).get('calories_burned') or 0,
            'minutes_exercised': (todays_workout or {}).get('duration') or 0,
        },
        'upcoming_sessions': upcoming_sessions,
    }


# ---------- Trainer side ----------

def trainer_clients(db: Database, user: CurrentUser) -> List[Dict[str, Any]]:
    """Members who booked the trainer's sessions, with session counts and workout streaks."""
    query: Dict[str, Any] = {} if user.is_admin else {'trainer_id': user.id}
    session_ids = [str(s['_id']) for s in db['sessions'].find(query, {'_id': 1})]
    bookings = list(db['bookings'].find({
        'session_id': {'$in': session_ids},
        'status': {'$in': ['confirmed', 'completed']},
    }))
    members = users_by_id(db, (b['member_id'] for b in bookings))

    clients: Dict[str, Dict[str, Any]] = {}
    for b in bookings:
        member = members.get(b['member_id'])
        if not member:
            continue
        client = clients.setdefault(b['member_id'], {
            'id': b['member_id'],
            'name': member.get('name'),
            'email': member.get('email'),
            'phone': member.get('phone'),
            'sessions_completed': 0,
            'total_sessions': 0,
            'last_session': None,
            'streak': 0,
        })
        client['total_sessions'] += 1
        if b['status'] == 'completed':
            client['sessions_completed'] += 1
        if client['last_session'] is None or b['created_at'] > client['last_session']:
            client['last_session'] = b['created_at']

    today = today_utc_date()
    for client in clients.values():
        client['streak'] = workout_streak(db, client['id'], today)
        if client['last_session'] is not None:
            client['last_session'] = client['last_session'].isoformat()
    return list(clients.values())
