"""
Patient Enrollment Platform
Session model.

Models:
    - UserSession: server-side session token backing the injectable SessionStore
"""

from datetime import datetime, timezone

from app.models import db


class UserSession(db.Model):
    """A request-scoped session token issued to a signed-in user."""

    __tablename__ = "user_sessions"

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    user_email = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    organization_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            # SQLite drops tzinfo; values are written as UTC
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= (now or datetime.now(timezone.utc))

    def __repr__(self):
        return f"<UserSession {self.user_email} exp={self.expires_at}>"
