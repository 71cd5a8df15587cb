from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import Optional
import datetime
import hashlib
import hmac
import logging
import secrets

from config import Config
from database import get_db
from models import AuthSession, Candidate, ChatMessage, utcnow

logger = logging.getLogger(__name__)


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or Config.PASSWORD_HASH_ITERATIONS
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt, expected = stored.split("$", 3)
        rounds = int(iterations)
    except (AttributeError, ValueError):
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return hmac.compare_digest(digest.hex(), expected)


def is_admin_username(username: str) -> bool:
    return (username or "").strip().lower() in Config.ADMIN_USERNAMES


async def create_session(
    db: AsyncSession, role: str, subject: str, organization_id: Optional[int] = None
) -> AuthSession:
    session = AuthSession(
        token=secrets.token_urlsafe(32),
        role=role,
        subject=str(subject),
        organization_id=organization_id,
        expires_at=utcnow() + datetime.timedelta(hours=Config.SESSION_TTL_HOURS),
    )
    db.add(session)
    await db.commit()
    return session


async def resolve_session(db: AsyncSession, token: Optional[str]) -> Optional[AuthSession]:
    if not token:
        return None
    result = await db.execute(select(AuthSession).where(AuthSession.token == token))
    session = result.scalar_one_or_none()
    if session is None:
        return None
    if session.expires_at <= utcnow():
        await db.delete(session)
        await db.commit()
        logger.info("[AUTH] Expired session removed for %s:%s", session.role, session.subject)
        return None
    return session


async def end_session(db: AsyncSession, session: AuthSession) -> None:
    await db.execute(delete(ChatMessage).where(ChatMessage.subject == chat_subject(session)))
    await db.execute(delete(AuthSession).where(AuthSession.token == session.token))
    await db.commit()


def chat_subject(session: AuthSession) -> str:
    return f"{session.role}:{session.subject}"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_session(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> AuthSession:
    session = await resolve_session(db, _bearer_token(authorization))
    if session is None:
        raise HTTPException(401, "Not authenticated")
    return session


async def require_admin(session: AuthSession = Depends(get_current_session)) -> AuthSession:
    if session.role != "admin":
        raise HTTPException(403, "Admin access required")
    return session


async def require_candidate(session: AuthSession = Depends(get_current_session)) -> AuthSession:
    if session.role != "candidate":
        raise HTTPException(403, "Candidate access required")
    return session


async def get_session_candidate(db: AsyncSession, session: AuthSession) -> Candidate:
    result = await db.execute(select(Candidate).where(Candidate.id == int(session.subject)))
    candidate = result.scalar_one_or_none()
    if candidate is None:
        raise HTTPException(401, "Account no longer exists")
    return candidate
