"""
Authentication and role-based access control.

A request is authenticated by resolving its bearer token to a stored user,
then authorized by looking the user's role up in ``CAPABILITIES``. Routes
declare the capability they need with ``Depends(require(...))`` and receive
the resolved ``CurrentUser``, which they hand explicitly to the domain code.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

import jwt
from fastapi import Depends, Header
from pydantic import BaseModel
from pymongo.database import Database
from werkzeug.security import check_password_hash, generate_password_hash

from config import JWT_ALGORITHM, JWT_EXPIRE_DAYS, JWT_SECRET
from database import get_db, to_object_id
from errors import AuthenticationError, AuthorizationError, ValidationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    MEMBER = 'member'
    TRAINER = 'trainer'
    ADMIN = 'admin'


# Capabilities
SELF_SERVICE = 'self_service'
READ_PLANS = 'read_plans'
MANAGE_SESSIONS = 'manage_sessions'
MANAGE_PLANS = 'manage_plans'
VIEW_CLIENTS = 'view_clients'
MANAGE_MEMBERS = 'manage_members'
MANAGE_STAFF = 'manage_staff'
MANAGE_PAYMENTS = 'manage_payments'
VIEW_ANALYTICS = 'view_analytics'

_MEMBER_CAPS = frozenset({SELF_SERVICE, READ_PLANS})
_TRAINER_CAPS = _MEMBER_CAPS | {MANAGE_SESSIONS, MANAGE_PLANS, VIEW_CLIENTS}
_ADMIN_CAPS = _TRAINER_CAPS | {MANAGE_MEMBERS, MANAGE_STAFF, MANAGE_PAYMENTS, VIEW_ANALYTICS}

CAPABILITIES: Dict[Role, FrozenSet[str]] = {
    Role.MEMBER: _MEMBER_CAPS,
    Role.TRAINER: _TRAINER_CAPS,
    Role.ADMIN: _ADMIN_CAPS,
}


class CurrentUser(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    phone: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def can(self, capability: str) -> bool:
        return capability in CAPABILITIES[self.role]


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_token(user_id: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {'id': user_id, 'iat': now, 'exp': now + timedelta(days=JWT_EXPIRE_DAYS)}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> str:
    """Return the user id carried by ``token``."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Your token has expired. Please log in again.')
    except jwt.InvalidTokenError:
        raise AuthenticationError('Invalid token. Please log in again.')
    user_id = payload.get('id')
    if not user_id:
        raise AuthenticationError('Invalid token. Please log in again.')
    return user_id


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> CurrentUser:
    token = _bearer_token(authorization)
    if token is None:
        raise AuthenticationError()
    user_id = decode_token(token)
    try:
        doc = db['users'].find_one({'_id': to_object_id(user_id)})
    except ValidationError:
        raise AuthenticationError('Invalid token. Please log in again.')
    if not doc:
        raise AuthenticationError('The user belonging to this token no longer exists.')
    return CurrentUser(
        id=str(doc['_id']),
        name=doc['name'],
        email=doc['email'],
        role=Role(doc['role']),
        phone=doc.get('phone'),
    )


def require(capability: str):
    """Dependency factory: the authenticated user, if their role grants ``capability``."""
    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.can(capability):
            logger.info("user %s (%s) denied %s", user.id, user.role.value, capability)
            raise AuthorizationError()
        return user
    return dependency
