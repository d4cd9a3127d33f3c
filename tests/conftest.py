from datetime import datetime, timedelta
from itertools import count

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Sessions, Users
from security import create_token, hash_password

_seq = count(1)


@pytest.fixture
def db():
    """In-memory database with the production indexes applied."""
    database = mongomock.MongoClient()['fittrack_test']
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role='member', name=None, password='secret123'):
        n = next(_seq)
        return create_document(db, 'users', Users(
            name=name or f'{role.title()} {n}',
            email=f'{role}{n}@example.com',
            password_hash=hash_password(password),
            role=role,
        ))
    return _make


@pytest.fixture
def auth():
    """Authorization headers for a stored user."""
    def _headers(user):
        return {'Authorization': f"Bearer {create_token(str(user['_id']))}"}
    return _headers


@pytest.fixture
def make_session(db, make_user):
    def _make(max_spots=2, trainer=None, days_ahead=1, time='09:00', status='scheduled'):
        trainer = trainer or make_user('trainer')
        return create_document(db, 'sessions', Sessions(
            trainer_id=str(trainer['_id']),
            type='HIIT Blast',
            date=datetime.utcnow() + timedelta(days=days_ahead),
            time=time,
            duration=45,
            max_spots=max_spots,
            status=status,
        ))
    return _make
