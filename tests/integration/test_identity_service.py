from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cifan.config import get_settings
from cifan.core.identity import IdentityService, subscribe_auth_state
from cifan.db.repositories import Repository
from cifan.db.session import SessionLocal
from cifan.errors import AuthenticationError


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> bool:
        self.sent.append((to, subject, body))
        return True


def _token_from(body: str) -> str:
    return body.split("?token=", 1)[1].split()[0]


def test_sign_up_opens_session_and_sends_verification() -> None:
    mailer = RecordingMailer()
    with SessionLocal() as db:
        service = IdentityService(db, mailer=mailer)
        grant = service.sign_up("  Director@Example.org ", "lantern", "Somchai")

        assert grant.identity.email == "director@example.org"
        assert grant.identity.email_verified is False
        assert grant.identity.role == "applicant"
        assert service.current_identity(grant.token) == grant.identity

    to, subject, body = mailer.sent[0]
    assert to == "director@example.org"
    assert "Verify your email" in subject
    assert body.count(get_settings().email_verification_url) == 1


def test_verify_email_marks_user_and_consumes_token() -> None:
    mailer = RecordingMailer()
    with SessionLocal() as db:
        service = IdentityService(db, mailer=mailer)
        grant = service.sign_up("director@example.org", "lantern")
        token = _token_from(mailer.sent[0][2])

        identity = service.verify_email(token)
        assert identity.email_verified is True
        assert service.reload_identity(grant.identity.uid).email_verified is True

        with pytest.raises(AuthenticationError, match="already used"):
            service.verify_email(token)
        with pytest.raises(AuthenticationError, match="already verified"):
            service.send_verification_email(grant.identity.uid)


def test_expired_verification_link_is_rejected() -> None:
    with SessionLocal() as db:
        service = IdentityService(db, mailer=RecordingMailer())
        grant = service.sign_up("director@example.org", "lantern")
        Repository(db).create_email_verification(
            user_id=grant.identity.uid,
            token="stale-token",
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )
        with pytest.raises(AuthenticationError, match="expired"):
            service.verify_email("stale-token")


@pytest.mark.parametrize(
    ("email", "password", "message"),
    [
        ("not-an-email", "lantern", "valid email"),
        ("director@example.org", "short", "at least 6 characters"),
    ],
)
def test_sign_up_rejects_bad_input(email: str, password: str, message: str) -> None:
    with SessionLocal() as db:
        with pytest.raises(AuthenticationError, match=message):
            IdentityService(db, mailer=RecordingMailer()).sign_up(email, password)


def test_duplicate_sign_up_and_wrong_password() -> None:
    with SessionLocal() as db:
        service = IdentityService(db, mailer=RecordingMailer())
        service.sign_up("director@example.org", "lantern")
        with pytest.raises(AuthenticationError, match="already exists"):
            service.sign_up("DIRECTOR@example.org", "another")
        with pytest.raises(AuthenticationError, match="Invalid email or password"):
            service.sign_in("director@example.org", "wrong-password")
        assert service.sign_in("Director@Example.org", "lantern").identity.email == "director@example.org"


def test_sign_out_invalidates_session_and_notifies_listeners() -> None:
    seen = []
    unsubscribe = subscribe_auth_state(seen.append)
    try:
        with SessionLocal() as db:
            service = IdentityService(db, mailer=RecordingMailer())
            grant = service.sign_up("director@example.org", "lantern")
            service.sign_out(grant.token)
            assert service.current_identity(grant.token) is None
    finally:
        unsubscribe()

    assert seen[0].email == "director@example.org"
    assert seen[-1] is None


def test_expired_session_is_dropped() -> None:
    with SessionLocal() as db:
        service = IdentityService(db, mailer=RecordingMailer())
        grant = service.sign_up("director@example.org", "lantern")
        Repository(db).create_auth_session(
            user_id=grant.identity.uid, token="old-session", expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )
        assert service.current_identity("old-session") is None
        assert Repository(db).get_auth_session("old-session") is None


def test_configured_admin_email_signs_up_as_super_admin() -> None:
    settings = get_settings().model_copy(update={"admin_emails": "festival@cifan.example"})
    with SessionLocal() as db:
        grant = IdentityService(db, settings=settings, mailer=RecordingMailer()).sign_up(
            "Festival@cifan.example", "lantern"
        )
    assert grant.identity.role == "super-admin"
