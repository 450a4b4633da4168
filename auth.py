import hashlib
import hmac
import secrets
from datetime import timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, Header
from pymongo.database import Database

from database import get_db, now, to_object_id
from errors import AuthenticationError, UnauthorizedError
from settings import get_settings


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if salt is None:
        salt = secrets.token_hex(16)
    pwd_hash = hashlib.pbkdf2_hmac(
        'sha256', password.encode('utf-8'), salt.encode('utf-8'), 100000
    ).hex()
    return pwd_hash, salt


def verify_password(password: str, user: Dict) -> bool:
    pwd_hash, _ = hash_password(password, user['salt'])
    return hmac.compare_digest(pwd_hash, user['password_hash'])


# Session tokens live in the "session" collection:
# { token, user_id, expires_at }

def create_session(db: Database, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    expires_at = now() + timedelta(days=get_settings().session_ttl_days)
    db['session'].insert_one({
        'token': token,
        'user_id': user_id,
        'expires_at': expires_at,
    })
    return token


def drop_session(db: Database, token: str) -> None:
    db['session'].delete_one({'token': token})


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith('Bearer '):
        return None
    return authorization.split(' ', 1)[1].strip() or None


def current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Dict:
    token = bearer_token(authorization)
    if not token:
        raise AuthenticationError('Not authorized, no token')
    session = db['session'].find_one({'token': token})
    if not session:
        raise AuthenticationError('Invalid token')
    expires_at = session.get('expires_at')
    # pymongo hands back naive UTC datetimes unless tz_aware is set
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is None or expires_at < now():
        raise AuthenticationError('Session expired')
    user = db['user'].find_one({'_id': to_object_id(session['user_id'])})
    if not user:
        raise AuthenticationError('User not found')
    if not user.get('is_active', True):
        raise AuthenticationError('Account disabled')
    return {
        'id': str(user['_id']),
        'name': user.get('name'),
        'email': user['email'],
        'role': user.get('role', 'user'),
    }


def admin_user(user: Dict = Depends(current_user)) -> Dict:
    if user['role'] != 'admin':
        raise UnauthorizedError('Admin access only')
    return user
