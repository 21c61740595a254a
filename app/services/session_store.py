"""
Session store.

Sessions are persisted in ``user_sessions`` and reached through a store
object registered on the app (``app.extensions["session_store"]``), so
request handlers and the audit context never depend on process-local
state and tests can swap in their own store.

Usage:
    store = get_session_store()
    session = store.create("nurse@clinic.org")
    store.resolve(session.token)   # -> UserSession | None
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from flask import Flask, current_app

from app.models import db
from app.models.auth import UserSession

logger = logging.getLogger(__name__)

EXTENSION_KEY = "session_store"


class SessionStore:
    """Database-backed session store."""

    def __init__(self, default_ttl: timedelta = timedelta(hours=24)) -> None:
        self.default_ttl = default_ttl

    def init_app(self, app: Flask) -> None:
        self.default_ttl = timedelta(hours=app.config.get("SESSION_TTL_HOURS", 24))
        app.extensions[EXTENSION_KEY] = self

    def create(self, user_email: str, ttl: timedelta | None = None, *,
               user_id: int | None = None, organization_id: int | None = None) -> UserSession:
        now = datetime.now(timezone.utc)
        session = UserSession(
            token=secrets.token_urlsafe(32),
            user_email=user_email,
            user_id=user_id,
            organization_id=organization_id,
            created_at=now,
            expires_at=now + (ttl or self.default_ttl),
        )
        db.session.add(session)
        db.session.commit()
        logger.info("Session issued for %s", user_email)
        return session

    def resolve(self, token: str | None) -> UserSession | None:
        """Return the live session for *token*, or None if unknown or expired."""
        if not token:
            return None
        session = UserSession.query.filter_by(token=token).first()
        if session is None:
            return None
        if session.is_expired():
            return None
        return session

    def revoke(self, token: str) -> bool:
        deleted = UserSession.query.filter_by(token=token).delete(synchronize_session="fetch")
        db.session.commit()
        return bool(deleted)

    def purge_expired(self, cutoff: datetime, now: datetime | None = None) -> int:
        """Delete sessions created before *cutoff* or already expired; the caller commits."""
        now = now or datetime.now(timezone.utc)
        return (
            UserSession.query
            .filter(db.or_(UserSession.created_at < cutoff, UserSession.expires_at < now))
            .delete(synchronize_session="fetch")
        )


def get_session_store() -> SessionStore:
    """Return the store registered on the current app."""
    store = current_app.extensions.get(EXTENSION_KEY)
    if store is None:
        raise RuntimeError("SessionStore is not registered on this app")
    return store
