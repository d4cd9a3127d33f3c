"""
Reset the database and load demo data.

    python seed.py
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List

from pymongo.database import Database

import bookings
from config import LOG_LEVEL
from database import create_document, ensure_indexes, get_db
from schemas import (CheckIns, Exercise, Memberships, Payments, PlanExercise,
                     Sessions, Staff, Users, WorkoutPlans, Workouts)
from security import hash_password

logger = logging.getLogger(__name__)

COLLECTIONS = ('users', 'memberships', 'sessions', 'bookings', 'workouts',
               'progress', 'checkins', 'staff', 'workoutplans', 'payments')

PLANS = [
    # plan_type, months, price
    ('Monthly', 1, 49.0),
    ('Quarterly', 3, 129.0),
    ('Annual', 12, 449.0),
]


def _user(db: Database, name: str, email: str, password: str, role: str, phone: str) -> Dict[str, Any]:
    return create_document(db, 'users', Users(
        name=name, email=email, password_hash=hash_password(password), role=role, phone=phone,
    ))


def seed(db: Database) -> Dict[str, int]:
    for name in COLLECTIONS:
        db[name].delete_many({})
    ensure_indexes(db)
    now = datetime.utcnow()
    today = datetime.combine(now.date(), datetime.min.time())

    _user(db, 'Admin User', 'admin@fittrack.com', 'admin123', 'admin', '+1 555-0001')
    trainers = [
        _user(db, 'Sarah Johnson', 'sarah.j@fittrack.com', 'trainer123', 'trainer', '+1 555-0201'),
        _user(db, 'Mike Chen', 'mike.c@fittrack.com', 'trainer123', 'trainer', '+1 555-0202'),
    ]
    specialities = [['Strength', 'HIIT'], ['Yoga', 'Mobility']]
    for trainer, spec in zip(trainers, specialities):
        create_document(db, 'staff', Staff(
            user_id=str(trainer['_id']),
            role='trainer',
            specializations=spec,
            rating=4.8,
            availability={'Monday': '7:00 AM - 3:00 PM', 'Wednesday': '7:00 AM - 3:00 PM'},
        ))

    members: List[Dict[str, Any]] = []
    for i in range(8):
        member = _user(db, f'Member {i + 1}', f'member{i + 1}@fittrack.com', 'member123', 'member', f'+1 555-01{i:02d}')
        members.append(member)
        plan_type, months, price = PLANS[i % len(PLANS)]
        # some current, some about to lapse, some already expired
        start = today - timedelta(days=20 + 15 * i)
        end = start + timedelta(days=30 * months)
        membership = create_document(db, 'memberships', Memberships(
            member_id=str(member['_id']),
            plan_type=plan_type,
            status='active' if end >= today else 'expired',
            start_date=start,
            end_date=end,
            price=price,
        ))
        create_document(db, 'payments', Payments(
            member_id=str(member['_id']),
            amount=price,
            type='membership',
            status='completed',
            payment_date=start,
            membership_id=str(membership['_id']),
        ))

        # a run of daily check-ins and workouts ending today
        for d in range(i % 5):
            when = today - timedelta(days=d) + timedelta(hours=7)
            create_document(db, 'checkins', CheckIns(
                member_id=str(member['_id']),
                location='FitTrack Downtown',
                check_in_time=when,
                day=when.date().isoformat(),
            ))
            create_document(db, 'workouts', Workouts(
                member_id=str(member['_id']),
                date=when,
                exercises=[
                    Exercise(name='Bench Press', sets=4, reps=8, weight=60 + 5 * i),
                    Exercise(name='Squat', sets=4, reps=6, weight=80 + 5 * i),
                ],
                duration=55,
                calories_burned=420,
            ))

    session_types = ['HIIT Blast', 'Power Yoga', 'Strength Circuit', 'Spin Class']
    sessions = []
    for d in range(1, 8):
        trainer = trainers[d % len(trainers)]
        sessions.append(create_document(db, 'sessions', Sessions(
            trainer_id=str(trainer['_id']),
            type=session_types[d % len(session_types)],
            date=today + timedelta(days=d, hours=9),
            time='09:00',
            duration=60,
            max_spots=12,
        )))
    for i, member in enumerate(members):
        bookings.book(db, str(member['_id']), str(sessions[i % len(sessions)]['_id']))

    create_document(db, 'workoutplans', WorkoutPlans(
        name='Beginner Strength',
        description='Full body strength foundations, three days a week',
        duration='8 weeks',
        difficulty='Beginner',
        category='strength',
        exercises=[
            PlanExercise(name='Goblet Squat', sets=3, reps=10, weight=16),
            PlanExercise(name='Push Up', sets=3, reps=12),
            PlanExercise(name='Dumbbell Row', sets=3, reps=10, weight=14),
        ],
        created_by=str(trainers[0]['_id']),
        assigned_to=[str(m['_id']) for m in members[:3]],
    ))

    counts = {name: db[name].count_documents({}) for name in COLLECTIONS}
    logger.info("seeded %s", counts)
    return counts


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    seed(get_db())
    logger.info("demo logins: admin@fittrack.com/admin123, sarah.j@fittrack.com/trainer123, member1@fittrack.com/member123")
