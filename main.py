import logging
import re
import secrets
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import bookings
import stats
from config import DEFAULT_CHECKIN_LOCATION, FRONTEND_URL, LOG_LEVEL, PORT
from database import (create_document, ensure_indexes, find_by_id, get_db,
                      to_object_id, to_public, user_summary, users_by_id)
from errors import (AuthenticationError, AuthorizationError, ConflictError,
                    NotFoundError, register_error_handlers)
from schemas import (AssignRequest, BookRequest, CheckInCreate, CheckIns,
                     LoginRequest, MemberCreate, Memberships, MemberUpdate,
                     PaymentCreate, Payments, PaymentStatus, PlanCreate,
                     PlanUpdate, Progress, ProgressCreate, RegisterRequest,
                     SessionCreate, SessionUpdate, Staff, StaffCreate, Users,
                     WorkoutCreate, WorkoutPlans, Workouts, WorkoutUpdate,
                     naive_utc)
from security import (MANAGE_MEMBERS, MANAGE_PAYMENTS, MANAGE_PLANS,
                      MANAGE_SESSIONS, MANAGE_STAFF, READ_PLANS, SELF_SERVICE,
                      VIEW_ANALYTICS, VIEW_CLIENTS, CurrentUser, Role,
                      create_token, get_current_user,
                      hash_password, require, verify_password)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- Helpers ----------

def success(results: Optional[int] = None, **data: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {'status': 'success'}
    if results is not None:
        body['results'] = results
    body['data'] = data
    return body


def no_content() -> Response:
    return Response(status_code=204)


def member_or_404(db: Database, member_id: str) -> Dict[str, Any]:
    member = find_by_id(db, 'users', member_id, role=Role.MEMBER.value)
    if not member:
        raise NotFoundError('Member not found')
    return member


def owner_filter(user: CurrentUser, field: str) -> Dict[str, Any]:
    """Admins act on any document; everyone else only on their own."""
    return {} if user.is_admin else {field: user.id}

# ---------- App ----------

@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(get_db())
    yield


app = FastAPI(title="FitTrack API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


@app.get("/")
def root():
    return {"message": "FitTrack backend running"}


@app.get("/health")
def health():
    return {"status": "success", "message": "Server is running"}

# ---------- Auth ----------

@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db),
             authorization: Optional[str] = Header(None)):
    role = payload.role or Role.MEMBER.value
    if role != Role.MEMBER.value and db['users'].count_documents({}) > 0:
        # staff accounts are made by an admin; the very first account may bootstrap one
        if not authorization or not get_current_user(authorization, db).is_admin:
            raise AuthorizationError('Only an admin can register trainer or admin accounts.')
    user = Users(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
        role=role,
        phone=payload.phone,
    )
    try:
        doc = create_document(db, 'users', user)
    except DuplicateKeyError:
        raise ConflictError('Email is already registered')
    logger.info("registered %s user %s", role, doc['_id'])
    return success(user=to_public(doc), token=create_token(str(doc['_id'])))


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    doc = db['users'].find_one({'email': payload.email.lower()})
    if not doc or not verify_password(doc['password_hash'], payload.password):
        raise AuthenticationError('Incorrect email or password')
    return success(user=to_public(doc), token=create_token(str(doc['_id'])))


@app.get("/api/auth/me")
def me(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return success(user=to_public(find_by_id(db, 'users', user.id)))

# ---------- Member home ----------

@app.get("/api/member-home")
def member_home(user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    return success(**stats.member_home(db, user.id))

# ---------- Workouts ----------

@app.get("/api/workouts/stats")
def workout_stats(user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    return success(stats=stats.workout_stats(db, user.id))


@app.get("/api/workouts")
def list_workouts(limit: int = Query(50, ge=1, le=200),
                  user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    items = [to_public(w) for w in db['workouts'].find({'member_id': user.id}).sort('date', DESCENDING).limit(limit)]
    return success(results=len(items), workouts=items)


@app.post("/api/workouts", status_code=201)
def create_workout(payload: WorkoutCreate, user: CurrentUser = Depends(require(SELF_SERVICE)),
                   db: Database = Depends(get_db)):
    workout = Workouts(member_id=user.id, **payload.model_dump(exclude_none=True))
    doc = create_document(db, 'workouts', workout)
    return success(workout=to_public(doc))


@app.patch("/api/workouts/{workout_id}")
def update_workout(workout_id: str, payload: WorkoutUpdate,
                   user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    existing = find_by_id(db, 'workouts', workout_id, member_id=user.id)
    if not existing:
        raise NotFoundError('Workout not found')
    fields = {k: existing.get(k) for k in ('date', 'exercises', 'duration', 'calories_burned', 'notes')}
    fields.update(payload.model_dump(exclude_unset=True, exclude_none=True))
    # re-validating through the collection model recomputes total_volume
    workout = Workouts(member_id=user.id, **fields)
    changes = workout.model_dump()
    changes['updated_at'] = datetime.utcnow()
    doc = db['workouts'].find_one_and_update(
        {'_id': existing['_id'], 'member_id': user.id},
        {'$set': changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError('Workout not found')
    return success(workout=to_public(doc))


@app.delete("/api/workouts/{workout_id}", status_code=204)
def delete_workout(workout_id: str, user: CurrentUser = Depends(require(SELF_SERVICE)),
                   db: Database = Depends(get_db)):
    res = db['workouts'].delete_one({'_id': to_object_id(workout_id), 'member_id': user.id})
    if res.deleted_count == 0:
        raise NotFoundError('Workout not found')
    return no_content()

# ---------- Progress ----------

@app.get("/api/progress/stats")
def progress_stats(user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    return success(stats=stats.progress_stats(db, user.id))


@app.get("/api/progress")
def list_progress(limit: int = Query(50, ge=1, le=500),
                  user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    items = [to_public(p) for p in db['progress'].find({'member_id': user.id}).sort('date', DESCENDING).limit(limit)]
    return success(results=len(items), progress=items)


@app.post("/api/progress", status_code=201)
def create_progress(payload: ProgressCreate, user: CurrentUser = Depends(require(SELF_SERVICE)),
                    db: Database = Depends(get_db)):
    entry = Progress(member_id=user.id, **payload.model_dump(exclude_none=True))
    doc = create_document(db, 'progress', entry)
    return success(progress=to_public(doc))

# ---------- Check-ins ----------

@app.post("/api/checkins", status_code=201)
def check_in(payload: Optional[CheckInCreate] = None, user: CurrentUser = Depends(require(SELF_SERVICE)),
             db: Database = Depends(get_db)):
    now = datetime.utcnow()
    day = now.date().isoformat()
    if db['checkins'].find_one({'member_id': user.id, 'day': day}):
        raise ConflictError('You have already checked in today')
    location = (payload.location if payload else None) or DEFAULT_CHECKIN_LOCATION
    try:
        doc = create_document(db, 'checkins', CheckIns(
            member_id=user.id, location=location, check_in_time=now, day=day,
        ))
    except DuplicateKeyError:
        raise ConflictError('You have already checked in today')
    logger.info("member %s checked in at %s", user.id, location)
    return success(check_in=to_public(doc))


@app.get("/api/checkins")
def list_checkins(user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    items = [to_public(c) for c in db['checkins'].find({'member_id': user.id}).sort('check_in_time', DESCENDING).limit(50)]
    return success(results=len(items), check_ins=items)

# ---------- Sessions & bookings ----------

@app.get("/api/sessions/available")
def available_sessions(after: Optional[datetime] = Query(None, alias='date'),
                       user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    items = bookings.list_available(db, after)
    return success(results=len(items), sessions=items)


@app.get("/api/sessions/my-bookings")
def my_bookings(user: CurrentUser = Depends(require(SELF_SERVICE)), db: Database = Depends(get_db)):
    items = bookings.my_bookings(db, user.id)
    return success(results=len(items), bookings=items)


@app.post("/api/sessions/book", status_code=201)
def book_session(payload: BookRequest, user: CurrentUser = Depends(require(SELF_SERVICE)),
                 db: Database = Depends(get_db)):
    booking = bookings.book(db, user.id, payload.session_id)
    return success(booking=to_public(booking))


@app.patch("/api/sessions/cancel/{booking_id}")
def cancel_booking(booking_id: str, user: CurrentUser = Depends(require(SELF_SERVICE)),
                   db: Database = Depends(get_db)):
    booking = bookings.cancel(db, user.id, booking_id)
    return success(booking=to_public(booking))


@app.get("/api/sessions/trainer")
def trainer_sessions(day: Optional[date] = Query(None, alias='date'),
                     user: CurrentUser = Depends(require(MANAGE_SESSIONS)), db: Database = Depends(get_db)):
    items = bookings.trainer_sessions(db, user, day)
    return success(results=len(items), sessions=items)


@app.post("/api/sessions", status_code=201)
def create_session(payload: SessionCreate, user: CurrentUser = Depends(require(MANAGE_SESSIONS)),
                   db: Database = Depends(get_db)):
    return success(session=to_public(bookings.create_session(db, user, payload)))


@app.patch("/api/sessions/{session_id}")
def update_session(session_id: str, payload: SessionUpdate,
                   user: CurrentUser = Depends(require(MANAGE_SESSIONS)), db: Database = Depends(get_db)):
    return success(session=to_public(bookings.update_session(db, user, session_id, payload)))


@app.delete("/api/sessions/{session_id}", status_code=204)
def delete_session(session_id: str, user: CurrentUser = Depends(require(MANAGE_SESSIONS)),
                   db: Database = Depends(get_db)):
    bookings.delete_session(db, user, session_id)
    return no_content()

# ---------- Trainer ----------

@app.get("/api/trainer/clients")
def trainer_clients(user: CurrentUser = Depends(require(VIEW_CLIENTS)), db: Database = Depends(get_db)):
    clients = stats.trainer_clients(db, user)
    return success(results=len(clients), clients=clients)

# ---------- Workout plans ----------

def _public_plan(plan: Dict[str, Any], users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    item = to_public(plan)
    item['created_by'] = user_summary(users.get(plan['created_by']), 'name') or {'id': plan['created_by']}
    item['assigned_to'] = [
        user_summary(users.get(m), 'name') or {'id': m} for m in plan.get('assigned_to', [])
    ]
    return item


@app.get("/api/plans")
def list_plans(category: Optional[str] = None, user: CurrentUser = Depends(require(READ_PLANS)),
               db: Database = Depends(get_db)):
    q: Dict[str, Any] = {}
    if category and category != 'all':
        q['category'] = category
    plans = list(db['workoutplans'].find(q).sort('created_at', DESCENDING))
    referenced = [p['created_by'] for p in plans] + [m for p in plans for m in p.get('assigned_to', [])]
    users = users_by_id(db, referenced)
    items = [_public_plan(p, users) for p in plans]
    return success(results=len(items), plans=items)


@app.post("/api/plans", status_code=201)
def create_plan(payload: PlanCreate, user: CurrentUser = Depends(require(MANAGE_PLANS)),
                db: Database = Depends(get_db)):
    doc = create_document(db, 'workoutplans', WorkoutPlans(created_by=user.id, **payload.model_dump()))
    return success(plan=to_public(doc))


@app.patch("/api/plans/{plan_id}")
def update_plan(plan_id: str, payload: PlanUpdate, user: CurrentUser = Depends(require(MANAGE_PLANS)),
                db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    changes['updated_at'] = datetime.utcnow()
    query = {'_id': to_object_id(plan_id), **owner_filter(user, 'created_by')}
    doc = db['workoutplans'].find_one_and_update(query, {'$set': changes}, return_document=ReturnDocument.AFTER)
    if not doc:
        raise NotFoundError('Plan not found or you do not have permission')
    return success(plan=to_public(doc))


@app.delete("/api/plans/{plan_id}", status_code=204)
def delete_plan(plan_id: str, user: CurrentUser = Depends(require(MANAGE_PLANS)),
                db: Database = Depends(get_db)):
    query = {'_id': to_object_id(plan_id), **owner_filter(user, 'created_by')}
    if db['workoutplans'].delete_one(query).deleted_count == 0:
        raise NotFoundError('Plan not found or you do not have permission')
    return no_content()


@app.post("/api/plans/{plan_id}/assign")
def assign_plan(plan_id: str, payload: AssignRequest, user: CurrentUser = Depends(require(MANAGE_PLANS)),
                db: Database = Depends(get_db)):
    member = member_or_404(db, payload.member_id)
    doc = db['workoutplans'].find_one_and_update(
        {'_id': to_object_id(plan_id)},
        {'$addToSet': {'assigned_to': str(member['_id'])}, '$set': {'updated_at': datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError('Plan not found')
    return success(plan=to_public(doc))

# ---------- Members (admin) ----------

def _member_overview(db: Database, member: Dict[str, Any]) -> Dict[str, Any]:
    member_id = str(member['_id'])
    item = to_public(member)
    membership = db['memberships'].find_one({'member_id': member_id}, sort=[('created_at', DESCENDING)])
    last_check_in = db['checkins'].find_one({'member_id': member_id}, sort=[('check_in_time', DESCENDING)])
    item['plan'] = membership['plan_type'] if membership else None
    item['status'] = membership['status'] if membership else 'expired'
    item['join_date'] = member['created_at'].isoformat() if member.get('created_at') else None
    item['expiry_date'] = membership['end_date'].isoformat() if membership else None
    item['last_check_in'] = last_check_in['check_in_time'].isoformat() if last_check_in else None
    return item


@app.get("/api/members")
def list_members(status: Optional[str] = None, search: Optional[str] = None,
                 user: CurrentUser = Depends(require(MANAGE_MEMBERS)), db: Database = Depends(get_db)):
    query: Dict[str, Any] = {'role': Role.MEMBER.value}
    if search:
        pattern = re.escape(search)
        query['$or'] = [
            {'name': {'$regex': pattern, '$options': 'i'}},
            {'email': {'$regex': pattern, '$options': 'i'}},
        ]
    items = [_member_overview(db, m) for m in db['users'].find(query).sort('created_at', DESCENDING)]
    if status and status != 'all':
        items = [m for m in items if m['status'] == status]
    return success(results=len(items), members=items)


@app.get("/api/members/{member_id}")
def get_member(member_id: str, user: CurrentUser = Depends(require(MANAGE_MEMBERS)),
               db: Database = Depends(get_db)):
    member = member_or_404(db, member_id)
    history = db['memberships'].find({'member_id': str(member['_id'])}).sort('created_at', DESCENDING)
    return success(member=_member_overview(db, member), memberships=[to_public(m) for m in history])


@app.post("/api/members", status_code=201)
def create_member(payload: MemberCreate, user: CurrentUser = Depends(require(MANAGE_MEMBERS)),
                  db: Database = Depends(get_db)):
    password = payload.password or secrets.token_urlsafe(9)
    try:
        member = create_document(db, 'users', Users(
            name=payload.name,
            email=payload.email.lower(),
            password_hash=hash_password(password),
            role=Role.MEMBER.value,
            phone=payload.phone,
        ))
    except DuplicateKeyError:
        raise ConflictError('Email is already registered')
    member_id = str(member['_id'])

    membership = None
    if payload.plan_type:
        start = naive_utc(payload.start_date) or datetime.utcnow()
        membership = create_document(db, 'memberships', Memberships(
            member_id=member_id,
            plan_type=payload.plan_type,
            start_date=start,
            end_date=naive_utc(payload.end_date) or start + timedelta(days=30),
            price=payload.price or 0,
        ))
        if membership['price'] > 0:
            create_document(db, 'payments', Payments(
                member_id=member_id,
                amount=membership['price'],
                type='membership',
                status='completed',
                membership_id=str(membership['_id']),
            ))
    logger.info("admin %s created member %s", user.id, member_id)

    data: Dict[str, Any] = {'member': to_public(member), 'membership': to_public(membership)}
    if not payload.password:
        data['temporary_password'] = password
    return success(**data)


@app.patch("/api/members/{member_id}")
def update_member(member_id: str, payload: MemberUpdate, user: CurrentUser = Depends(require(MANAGE_MEMBERS)),
                  db: Database = Depends(get_db)):
    member = member_or_404(db, member_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if 'email' in changes:
        changes['email'] = changes['email'].lower()
    changes['updated_at'] = datetime.utcnow()
    try:
        doc = db['users'].find_one_and_update({'_id': member['_id']}, {'$set': changes},
                                              return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise ConflictError('Email is already registered')
    return success(member=to_public(doc))


@app.delete("/api/members/{member_id}", status_code=204)
def delete_member(member_id: str, user: CurrentUser = Depends(require(MANAGE_MEMBERS)),
                  db: Database = Depends(get_db)):
    member = member_or_404(db, member_id)
    mid = str(member['_id'])
    # release held spots before the bookings go
    for b in db['bookings'].find({'member_id': mid, 'status': 'confirmed'}, {'_id': 1}):
        bookings.cancel(db, mid, str(b['_id']))
    for name in ('bookings', 'memberships', 'workouts', 'progress', 'checkins'):
        db[name].delete_many({'member_id': mid})
    db['workoutplans'].update_many({'assigned_to': mid}, {'$pull': {'assigned_to': mid}})
    db['users'].delete_one({'_id': member['_id']})
    logger.info("admin %s deleted member %s", user.id, mid)
    return no_content()

# ---------- Staff (admin) ----------

@app.get("/api/staff")
def list_staff(filter_: Optional[str] = Query(None, alias="filter"), user: CurrentUser = Depends(require(MANAGE_STAFF)),
               db: Database = Depends(get_db)):
    q: Dict[str, Any] = {}
    if filter_ == 'trainers':
        ids = [str(u['_id']) for u in db['users'].find({'role': Role.TRAINER.value}, {'_id': 1})]
        q['user_id'] = {'$in': ids}
    elif filter_ == 'staff':
        ids = [str(u['_id']) for u in db['users'].find(
            {'role': {'$in': [Role.ADMIN.value, Role.TRAINER.value]}}, {'_id': 1})]
        q['user_id'] = {'$in': ids}
        q['role'] = {'$ne': 'trainer'}
    records = list(db['staff'].find(q).sort('join_date', DESCENDING))
    users = users_by_id(db, (s['user_id'] for s in records))
    items = []
    for s in records:
        item = to_public(s)
        item['user'] = user_summary(users.get(s['user_id']), 'name', 'email', 'phone', 'role')
        items.append(item)
    return success(results=len(items), staff=items)


@app.post("/api/staff", status_code=201)
def create_staff(payload: StaffCreate, user: CurrentUser = Depends(require(MANAGE_STAFF)),
                 db: Database = Depends(get_db)):
    if not find_by_id(db, 'users', payload.user_id):
        raise NotFoundError('User not found')
    try:
        doc = create_document(db, 'staff', Staff(**payload.model_dump()))
    except DuplicateKeyError:
        raise ConflictError('A staff record already exists for this user')
    return success(staff=to_public(doc))

# ---------- Payments (admin) ----------

@app.get("/api/payments")
def list_payments(status: Optional[PaymentStatus] = None, member_id: Optional[str] = None,
                  date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                  user: CurrentUser = Depends(require(MANAGE_PAYMENTS)), db: Database = Depends(get_db)):
    q: Dict[str, Any] = {}
    if status:
        q['status'] = status
    if member_id:
        q['member_id'] = member_id
    if date_from or date_to:
        q['payment_date'] = {}
        if date_from:
            q['payment_date']['$gte'] = naive_utc(date_from)
        if date_to:
            q['payment_date']['$lt'] = naive_utc(date_to)
    items = [to_public(p) for p in db['payments'].find(q).sort('payment_date', DESCENDING)]
    return success(results=len(items), payments=items)


@app.post("/api/payments", status_code=201)
def create_payment(payload: PaymentCreate, user: CurrentUser = Depends(require(MANAGE_PAYMENTS)),
                   db: Database = Depends(get_db)):
    member_or_404(db, payload.member_id)
    if payload.membership_id and not find_by_id(db, 'memberships', payload.membership_id):
        raise NotFoundError('Membership not found')
    doc = create_document(db, 'payments', Payments(**payload.model_dump(exclude_none=True)))
    return success(payment=to_public(doc))

# ---------- Analytics (admin) ----------

@app.get("/api/analytics/dashboard")
def analytics_dashboard(user: CurrentUser = Depends(require(VIEW_ANALYTICS)), db: Database = Depends(get_db)):
    return success(stats=stats.dashboard(db))


@app.get("/api/analytics/revenue")
def analytics_revenue(months: Optional[int] = Query(None, ge=1, le=60),
                      user: CurrentUser = Depends(require(VIEW_ANALYTICS)), db: Database = Depends(get_db)):
    return success(**stats.revenue_analytics(db, months))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
