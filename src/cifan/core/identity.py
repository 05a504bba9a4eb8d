from __future__ import annotations

import logging
import secrets
import smtplib
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from email.mime.text import MIMEText

import bcrypt
from sqlalchemy.orm import Session

from cifan.config import Settings, get_settings
from cifan.core.validation import validate_email
from cifan.db.models import User
from cifan.db.repositories import Repository
from cifan.errors import AuthenticationError
from cifan.types import Identity, SessionGrant

logger = logging.getLogger(__name__)

AuthListener = Callable[[Identity | None], None]

MIN_PASSWORD_LENGTH = 6

_listeners: list[AuthListener] = []


def subscribe_auth_state(listener: AuthListener) -> Callable[[], None]:
    """Register for sign-in/sign-out notifications. Returns the unsubscribe function."""
    _listeners.append(listener)

    def unsubscribe() -> None:
        if listener in _listeners:
            _listeners.remove(listener)

    return unsubscribe


def _notify(identity: Identity | None) -> None:
    for listener in list(_listeners):
        try:
            listener(identity)
        except Exception:
            logger.exception("Auth state listener failed")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def to_identity(user: User) -> Identity:
    return Identity(
        uid=user.id,
        email=user.email,
        email_verified=user.email_verified,
        display_name=user.display_name,
        role=user.role,
    )


def _aware(value: datetime) -> datetime:
    # sqlite hands timezone-aware columns back naive
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class EmailSender:
    """Sends plain text mail over SMTP, or logs it when no SMTP host is configured."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def send(self, to: str, subject: str, body: str) -> bool:
        settings = self.settings
        if not settings.smtp_host:
            logger.info("SMTP not configured; mail to=%s subject=%r body=%s", to, subject, body)
            return False

        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = settings.smtp_from
        message["To"] = to
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.sendmail(settings.smtp_from, [to], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send mail to=%s: %s", to, exc)
            return False

        logger.info("Mail sent to=%s subject=%r", to, subject)
        return True


class IdentityService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        mailer: EmailSender | None = None,
    ):
        self.repo = Repository(session)
        self.settings = settings or get_settings()
        self.mailer = mailer or EmailSender(self.settings)

    def sign_up(self, email: str, password: str, display_name: str = "") -> SessionGrant:
        email = email.strip().lower()
        if not validate_email(email):
            raise AuthenticationError("Please enter a valid email address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthenticationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if self.repo.get_user_by_email(email) is not None:
            raise AuthenticationError("An account with this email already exists")

        role = "super-admin" if email in self.settings.admin_email_list else "applicant"
        user = self.repo.create_user(
            email=email,
            password_hash=hash_password(password),
            display_name=display_name.strip(),
            role=role,
        )
        logger.info("User signed up user_id=%s role=%s", user.id, role)
        self.send_verification_email(user.id)
        return self._open_session(user)

    def sign_in(self, email: str, password: str) -> SessionGrant:
        user = self.repo.get_user_by_email(email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        return self._open_session(user)

    def sign_out(self, token: str) -> None:
        session = self.repo.get_auth_session(token)
        self.repo.delete_auth_session(token)
        if session is not None:
            logger.info("User signed out user_id=%s", session.user_id)
            _notify(None)

    def current_identity(self, token: str | None) -> Identity | None:
        if not token:
            return None
        session = self.repo.get_auth_session(token)
        if session is None:
            return None
        if _aware(session.expires_at) <= datetime.now(UTC):
            self.repo.delete_auth_session(token)
            return None
        user = self.repo.get_user(session.user_id)
        return to_identity(user) if user else None

    def reload_identity(self, uid: str) -> Identity:
        user = self.repo.get_user(uid)
        if user is None:
            raise AuthenticationError("User not found")
        return to_identity(user)

    def send_verification_email(self, uid: str) -> str:
        user = self.repo.get_user(uid)
        if user is None:
            raise AuthenticationError("User not found")
        if user.email_verified:
            raise AuthenticationError("Email is already verified")

        token = secrets.token_urlsafe(32)
        expires_at = datetime.now(UTC) + timedelta(hours=self.settings.email_verification_ttl_hours)
        self.repo.create_email_verification(user_id=user.id, token=token, expires_at=expires_at)

        link = f"{self.settings.email_verification_url}?token={token}"
        self.mailer.send(
            user.email,
            "Verify your email for CIFAN submissions",
            "Please confirm your email address to submit your film.\n\n"
            f"{link}\n\n"
            f"This link expires in {self.settings.email_verification_ttl_hours} hours.",
        )
        return token

    def verify_email(self, token: str) -> Identity:
        verification = self.repo.get_email_verification(token)
        if verification is None or verification.used_at is not None:
            raise AuthenticationError("Invalid or already used verification link")
        if _aware(verification.expires_at) <= datetime.now(UTC):
            raise AuthenticationError("Verification link has expired")

        self.repo.mark_email_verification_used(verification.id)
        user = self.repo.update_user(verification.user_id, email_verified=True)
        logger.info("Email verified user_id=%s", user.id)
        identity = to_identity(user)
        _notify(identity)
        return identity

    def _open_session(self, user: User) -> SessionGrant:
        token = secrets.token_urlsafe(32)
        expires_at = datetime.now(UTC) + timedelta(minutes=self.settings.session_ttl_min)
        self.repo.create_auth_session(user_id=user.id, token=token, expires_at=expires_at)
        user = self.repo.update_user(user.id, last_login_at=datetime.now(UTC))
        identity = to_identity(user)
        _notify(identity)
        return SessionGrant(identity=identity, token=token, expires_at=expires_at)
