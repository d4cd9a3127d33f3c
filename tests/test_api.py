from datetime import datetime, timedelta, timezone

import jwt

import config

SQUAT = {'name': 'Squat', 'sets': 3, 'reps': 10, 'weight': 100}


def _fail(res, status_code, message=None):
    assert res.status_code == status_code, res.text
    body = res.json()
    assert body['status'] == 'fail'
    if message is not None:
        assert body['message'] == message
    return body


# -------------------------
# health & errors
# -------------------------
def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    assert res.json()['status'] == 'success'


def test_unknown_route_uses_the_error_envelope(client):
    _fail(client.get('/api/nope'), 404, "Can't find /api/nope on this server")


def test_invalid_body_is_a_400(client):
    body = _fail(client.post('/api/auth/register', json={'name': 'X', 'email': 'not-an-email', 'password': 'secret123'}), 400)
    assert 'email' in body['message']


# -------------------------
# auth
# -------------------------
def test_register_then_login_then_me(client):
    res = client.post('/api/auth/register', json={'name': 'Ada', 'email': 'Ada@Example.com', 'password': 'secret123'})
    assert res.status_code == 201, res.text
    data = res.json()['data']
    assert data['user']['email'] == 'ada@example.com'
    assert data['user']['role'] == 'member'
    assert 'password_hash' not in data['user']

    res = client.post('/api/auth/login', json={'email': 'ada@example.com', 'password': 'secret123'})
    assert res.status_code == 200
    token = res.json()['data']['token']

    res = client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert res.status_code == 200
    assert res.json()['data']['user']['name'] == 'Ada'


def test_register_duplicate_email(client, make_user):
    user = make_user()
    res = client.post('/api/auth/register', json={'name': 'Dup', 'email': user['email'], 'password': 'secret123'})
    _fail(res, 400, 'Email is already registered')


def test_login_with_wrong_password(client, make_user):
    user = make_user()
    res = client.post('/api/auth/login', json={'email': user['email'], 'password': 'wrong-one'})
    _fail(res, 401, 'Incorrect email or password')


def test_first_account_may_bootstrap_an_admin(client):
    res = client.post('/api/auth/register', json={'name': 'Root', 'email': 'root@example.com', 'password': 'secret123', 'role': 'admin'})
    assert res.status_code == 201
    assert res.json()['data']['user']['role'] == 'admin'


def test_self_registration_cannot_pick_a_staff_role(client, make_user):
    make_user()
    res = client.post('/api/auth/register', json={'name': 'Eve', 'email': 'eve@example.com', 'password': 'secret123', 'role': 'admin'})
    _fail(res, 403)


def test_stale_token_does_not_block_member_signup(client, make_user):
    make_user()
    res = client.post('/api/auth/register', headers={'Authorization': 'Bearer garbage'},
                      json={'name': 'Sam', 'email': 'sam@example.com', 'password': 'secret123'})
    assert res.status_code == 201, res.text
    assert res.json()['data']['user']['role'] == 'member'


def test_staff_signup_with_a_member_token_is_forbidden(client, make_user, auth):
    res = client.post('/api/auth/register', headers=auth(make_user()),
                      json={'name': 'Max', 'email': 'max@example.com', 'password': 'secret123', 'role': 'trainer'})
    _fail(res, 403)


def test_admin_can_register_a_trainer(client, make_user, auth):
    admin = make_user('admin')
    res = client.post('/api/auth/register', headers=auth(admin),
                      json={'name': 'Tom', 'email': 'tom@example.com', 'password': 'secret123', 'role': 'trainer'})
    assert res.status_code == 201
    assert res.json()['data']['user']['role'] == 'trainer'


def test_missing_token(client):
    _fail(client.get('/api/auth/me'), 401, 'You are not logged in. Please log in to get access.')


def test_garbage_token(client):
    _fail(client.get('/api/auth/me', headers={'Authorization': 'Bearer abc.def.ghi'}), 401, 'Invalid token. Please log in again.')


def test_expired_token(client, make_user):
    user = make_user()
    past = datetime.now(timezone.utc) - timedelta(days=10)
    token = jwt.encode({'id': str(user['_id']), 'iat': past, 'exp': past + timedelta(days=1)},
                       config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    res = client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})
    _fail(res, 401, 'Your token has expired. Please log in again.')


def test_token_of_a_deleted_user(client, db, make_user, auth):
    user = make_user()
    headers = auth(user)
    db['users'].delete_one({'_id': user['_id']})
    _fail(client.get('/api/auth/me', headers=headers), 401, 'The user belonging to this token no longer exists.')


# -------------------------
# role checks
# -------------------------
def test_member_is_kept_out_of_trainer_and_admin_routes(client, make_user, auth):
    headers = auth(make_user())
    session = {'type': 'Yoga', 'date': '2030-01-01T09:00:00Z', 'time': '09:00', 'duration': 60, 'max_spots': 5}
    _fail(client.post('/api/sessions', json=session, headers=headers), 403)
    _fail(client.get('/api/trainer/clients', headers=headers), 403)
    _fail(client.get('/api/members', headers=headers), 403)
    _fail(client.get('/api/analytics/dashboard', headers=headers), 403)


def test_trainer_is_kept_out_of_admin_routes(client, make_user, auth):
    headers = auth(make_user('trainer'))
    _fail(client.get('/api/analytics/dashboard', headers=headers), 403)
    _fail(client.get('/api/payments', headers=headers), 403)
    assert client.get('/api/sessions/trainer', headers=headers).status_code == 200


def test_admin_sees_the_dashboard(client, make_user, auth):
    res = client.get('/api/analytics/dashboard', headers=auth(make_user('admin')))
    assert res.status_code == 200
    assert set(res.json()['data']['stats']) == {'active_members', 'expiring_this_month', 'today_revenue', 'today_check_ins'}


def test_revenue_months_are_bounded(client, make_user, auth):
    headers = auth(make_user('admin'))
    _fail(client.get('/api/analytics/revenue?months=0', headers=headers), 400)
    res = client.get('/api/analytics/revenue?months=3', headers=headers)
    assert res.status_code == 200
    assert res.json()['data'] == {'monthly_revenue': [], 'plan_distribution': []}


# -------------------------
# member self-service
# -------------------------
def test_second_check_in_the_same_day_fails(client, make_user, auth):
    headers = auth(make_user())
    res = client.post('/api/checkins', headers=headers)
    assert res.status_code == 201, res.text
    assert res.json()['data']['check_in']['location'] == config.DEFAULT_CHECKIN_LOCATION

    _fail(client.post('/api/checkins', json={'location': 'Uptown'}, headers=headers), 400,
          'You have already checked in today')

    res = client.get('/api/member-home', headers=headers)
    assert res.json()['data']['today_stats']['streak'] == 1


def test_workout_volume_is_computed_on_create_and_update(client, make_user, auth):
    headers = auth(make_user())
    res = client.post('/api/workouts', headers=headers,
                      json={'exercises': [SQUAT], 'duration': 45, 'total_volume': 7})
    assert res.status_code == 201, res.text
    workout = res.json()['data']['workout']
    assert workout['total_volume'] == 3000

    res = client.patch(f"/api/workouts/{workout['id']}", headers=headers,
                       json={'exercises': [SQUAT, {'name': 'Deadlift', 'sets': 1, 'reps': 5, 'weight': 140}]})
    assert res.status_code == 200, res.text
    assert res.json()['data']['workout']['total_volume'] == 3700
    assert res.json()['data']['workout']['duration'] == 45

    stats = client.get('/api/workouts/stats', headers=headers).json()['data']['stats']
    assert stats['total_workouts'] == 1
    assert stats['total_volume'] == 3700
    assert stats['streak'] == 1


def test_workouts_are_private_to_their_member(client, make_user, auth):
    owner, other = auth(make_user()), auth(make_user())
    workout = client.post('/api/workouts', headers=owner, json={'exercises': [SQUAT], 'duration': 30}).json()['data']['workout']

    assert client.get('/api/workouts', headers=other).json()['results'] == 0
    _fail(client.delete(f"/api/workouts/{workout['id']}", headers=other), 404)
    assert client.delete(f"/api/workouts/{workout['id']}", headers=owner).status_code == 204


def test_progress_entries_feed_the_stats(client, make_user, auth):
    headers = auth(make_user())
    client.post('/api/progress', headers=headers, json={'date': '2026-01-01T08:00:00Z', 'weight': 90})
    client.post('/api/progress', headers=headers, json={'date': '2026-03-01T08:00:00Z', 'weight': 86.5})

    res = client.get('/api/progress/stats', headers=headers)

    assert res.json()['data']['stats']['weight'] == {'current': 86.5, 'start': 90, 'change': -3.5}


# -------------------------
# sessions & bookings
# -------------------------
def test_booking_flow(client, make_user, make_session, auth):
    session = make_session(max_spots=1)
    first, second = auth(make_user()), auth(make_user())
    sid = str(session['_id'])

    res = client.post('/api/sessions/book', json={'session_id': sid}, headers=first)
    assert res.status_code == 201, res.text
    booking_id = res.json()['data']['booking']['id']

    _fail(client.post('/api/sessions/book', json={'session_id': sid}, headers=first), 400,
          'You have already booked this session')
    _fail(client.post('/api/sessions/book', json={'session_id': sid}, headers=second), 400,
          'Session is fully booked')

    res = client.patch(f'/api/sessions/cancel/{booking_id}', headers=first)
    assert res.status_code == 200
    assert res.json()['data']['booking']['status'] == 'cancelled'

    assert client.post('/api/sessions/book', json={'session_id': sid}, headers=second).status_code == 201

    (available,) = client.get('/api/sessions/available', headers=first).json()['data']['sessions']
    assert available['spots'] == 0
    assert available['booked_spots'] == 1

    mine = client.get('/api/sessions/my-bookings', headers=first).json()['data']['bookings']
    assert [b['status'] for b in mine] == ['cancelled']
    assert mine[0]['session']['id'] == sid


def test_booking_unknown_session(client, make_user, auth):
    headers = auth(make_user())
    _fail(client.post('/api/sessions/book', json={'session_id': '64b7f0000000000000000000'}, headers=headers), 404)
    _fail(client.post('/api/sessions/book', json={'session_id': 'nope'}, headers=headers), 400)


def test_trainer_schedules_and_sees_bookings(client, make_user, auth):
    trainer = make_user('trainer')
    headers = auth(trainer)
    when = (datetime.utcnow() + timedelta(days=2)).replace(hour=9, minute=0, second=0, microsecond=0)
    res = client.post('/api/sessions', headers=headers, json={
        'type': 'Spin Class', 'date': when.isoformat(), 'time': '09:00', 'duration': 45, 'max_spots': 10,
    })
    assert res.status_code == 201, res.text
    session = res.json()['data']['session']
    assert session['trainer_id'] == str(trainer['_id'])

    member = make_user()
    client.post('/api/sessions/book', json={'session_id': session['id']}, headers=auth(member))

    res = client.get(f'/api/sessions/trainer?date={when.date().isoformat()}', headers=headers)
    (listed,) = res.json()['data']['sessions']
    assert [b['member']['name'] for b in listed['bookings']] == [member['name']]

    clients = client.get('/api/trainer/clients', headers=headers).json()['data']['clients']
    assert [c['id'] for c in clients] == [str(member['_id'])]


# -------------------------
# plans
# -------------------------
PLAN = {
    'name': 'Strength Basics', 'description': 'Three days a week', 'duration': '6 weeks',
    'difficulty': 'Beginner', 'category': 'strength',
    'exercises': [{'name': 'Squat', 'sets': 3, 'reps': 8}],
}


def test_only_the_author_or_an_admin_edits_a_plan(client, make_user, auth):
    author, rival, admin = auth(make_user('trainer')), auth(make_user('trainer')), auth(make_user('admin'))
    plan = client.post('/api/plans', json=PLAN, headers=author).json()['data']['plan']

    _fail(client.patch(f"/api/plans/{plan['id']}", json={'name': 'Hijacked'}, headers=rival), 404)
    _fail(client.delete(f"/api/plans/{plan['id']}", headers=rival), 404)

    res = client.patch(f"/api/plans/{plan['id']}", json={'name': 'Strength Plus'}, headers=admin)
    assert res.status_code == 200
    assert res.json()['data']['plan']['name'] == 'Strength Plus'

    assert client.delete(f"/api/plans/{plan['id']}", headers=author).status_code == 204


def test_assigning_a_plan_shows_up_in_the_listing(client, make_user, auth):
    trainer, member = make_user('trainer'), make_user()
    headers = auth(trainer)
    plan = client.post('/api/plans', json=PLAN, headers=headers).json()['data']['plan']

    res = client.post(f"/api/plans/{plan['id']}/assign", json={'member_id': str(member['_id'])}, headers=headers)
    assert res.status_code == 200

    (listed,) = client.get('/api/plans?category=strength', headers=auth(member)).json()['data']['plans']
    assert listed['created_by']['name'] == trainer['name']
    assert [m['id'] for m in listed['assigned_to']] == [str(member['_id'])]
    assert client.get('/api/plans?category=cardio', headers=headers).json()['results'] == 0


# -------------------------
# members, payments (admin)
# -------------------------
def test_admin_member_lifecycle(client, db, make_user, make_session, auth):
    headers = auth(make_user('admin'))
    res = client.post('/api/members', headers=headers, json={
        'name': 'Grace', 'email': 'grace@example.com', 'plan_type': 'Monthly', 'price': 49,
    })
    assert res.status_code == 201, res.text
    data = res.json()['data']
    member_id = data['member']['id']
    assert data['membership']['plan_type'] == 'Monthly'
    assert data['temporary_password']
    assert db['payments'].count_documents({'member_id': member_id, 'status': 'completed'}) == 1

    members = client.get('/api/members?status=active&search=grace', headers=headers).json()['data']['members']
    assert [(m['id'], m['plan']) for m in members] == [(member_id, 'Monthly')]

    login = client.post('/api/auth/login', json={'email': 'grace@example.com', 'password': data['temporary_password']})
    session = make_session(max_spots=3)
    client.post('/api/sessions/book', json={'session_id': str(session['_id'])},
                headers={'Authorization': f"Bearer {login.json()['data']['token']}"})
    assert db['sessions'].find_one({'_id': session['_id']})['booked_spots'] == 1

    assert client.delete(f'/api/members/{member_id}', headers=headers).status_code == 204
    assert db['sessions'].find_one({'_id': session['_id']})['booked_spots'] == 0
    assert db['bookings'].count_documents({'member_id': member_id}) == 0
    _fail(client.get(f'/api/members/{member_id}', headers=headers), 404)


def test_member_lookup_with_a_malformed_id(client, make_user, auth):
    _fail(client.get('/api/members/not-an-id', headers=auth(make_user('admin'))), 400, 'Invalid id: not-an-id')


def test_recorded_payment_counts_towards_revenue(client, make_user, auth):
    headers = auth(make_user('admin'))
    member = make_user()
    res = client.post('/api/payments', headers=headers, json={
        'member_id': str(member['_id']), 'amount': 25, 'type': 'session',
    })
    assert res.status_code == 201, res.text
    client.post('/api/payments', headers=headers, json={
        'member_id': str(member['_id']), 'amount': 99, 'type': 'session', 'status': 'pending',
    })

    assert client.get('/api/payments?status=pending', headers=headers).json()['results'] == 1
    stats = client.get('/api/analytics/dashboard', headers=headers).json()['data']['stats']
    assert stats['today_revenue'] == 25


def test_staff_records(client, make_user, auth):
    headers = auth(make_user('admin'))
    trainer = make_user('trainer')
    payload = {'user_id': str(trainer['_id']), 'role': 'trainer', 'specializations': ['HIIT']}

    assert client.post('/api/staff', json=payload, headers=headers).status_code == 201
    _fail(client.post('/api/staff', json=payload, headers=headers), 400)

    (record,) = client.get('/api/staff?filter=trainers', headers=headers).json()['data']['staff']
    assert record['user']['name'] == trainer['name']
