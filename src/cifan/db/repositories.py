from __future__ import annotations

import copy
import hashlib
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cifan.db.models import (
    ApplicationScore,
    AuthSession,
    EmailVerification,
    SubmissionDocument,
    User,
)


class ServerTimestamp:
    """Placeholder resolved to the write time when a document is stored."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = ServerTimestamp()


def hash_token(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def resolve_server_values(value: Any, now: datetime) -> Any:
    if isinstance(value, ServerTimestamp):
        return now.isoformat()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: resolve_server_values(item, now) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_server_values(item, now) for item in value]
    return value


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # users

    def create_user(
        self,
        *,
        email: str,
        password_hash: str,
        display_name: str = "",
        role: str = "applicant",
    ) -> User:
        user = User(
            id=uuid4().hex,
            email=email,
            password_hash=password_hash,
            display_name=display_name,
            role=role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.session.scalar(select(User).where(User.email == email.strip().lower()))

    def list_users(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.created_at.asc())).all())

    def update_user(self, user_id: str, **values: Any) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError(f"user {user_id} not found")
        for key, value in values.items():
            setattr(user, key, value)
        self.session.commit()
        self.session.refresh(user)
        return user

    def create_auth_session(self, *, user_id: str, token: str, expires_at: datetime) -> AuthSession:
        row = AuthSession(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def get_auth_session(self, token: str) -> AuthSession | None:
        return self.session.scalar(select(AuthSession).where(AuthSession.token_hash == hash_token(token)))

    def delete_auth_session(self, token: str) -> bool:
        result = self.session.execute(delete(AuthSession).where(AuthSession.token_hash == hash_token(token)))
        self.session.commit()
        return bool(result.rowcount)

    def create_email_verification(
        self, *, user_id: str, token: str, expires_at: datetime
    ) -> EmailVerification:
        row = EmailVerification(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def get_email_verification(self, token: str) -> EmailVerification | None:
        return self.session.scalar(
            select(EmailVerification).where(EmailVerification.token_hash == hash_token(token))
        )

    def mark_email_verification_used(self, verification_id: int) -> None:
        row = self.session.get(EmailVerification, verification_id)
        if row:
            row.used_at = datetime.now(UTC)
            self.session.commit()

    # submission documents

    def create_document(self, fields: dict[str, Any]) -> SubmissionDocument:
        now = datetime.now(UTC)
        resolved = resolve_server_values(fields, now)
        document = SubmissionDocument(id=uuid4().hex, fields_json=resolved)
        self._mirror_columns(document, resolved)
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        return document

    def get_document(self, document_id: str) -> dict[str, Any] | None:
        document = self.session.get(SubmissionDocument, document_id)
        if document is None:
            return None
        return {**copy.deepcopy(document.fields_json or {}), "id": document.id}

    def update_document(self, document_id: str, fields: dict[str, Any]) -> SubmissionDocument:
        """Merge fields into a document. Dotted keys address nested maps ("files.poster_file")."""
        document = self.session.get(SubmissionDocument, document_id)
        if document is None:
            raise ValueError(f"submission {document_id} not found")

        now = datetime.now(UTC)
        merged = copy.deepcopy(document.fields_json or {})
        for key, value in fields.items():
            target = merged
            *parents, leaf = key.split(".")
            for part in parents:
                child = target.get(part)
                if not isinstance(child, dict):
                    child = {}
                    target[part] = child
                target = child
            target[leaf] = resolve_server_values(value, now)

        document.fields_json = merged
        self._mirror_columns(document, merged)
        self.session.commit()
        self.session.refresh(document)
        return document

    def list_documents(
        self,
        *,
        user_id: str | None = None,
        statuses: Iterable[str] | None = None,
        categories: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        statement = select(SubmissionDocument)
        if user_id is not None:
            statement = statement.where(SubmissionDocument.user_id == user_id)
        if statuses:
            statement = statement.where(SubmissionDocument.status.in_(list(statuses)))
        if categories:
            statement = statement.where(SubmissionDocument.category.in_(list(categories)))
        statement = statement.order_by(SubmissionDocument.last_modified.desc())
        if limit:
            statement = statement.limit(limit)
        return [
            {**copy.deepcopy(row.fields_json or {}), "id": row.id}
            for row in self.session.scalars(statement).all()
        ]

    def _mirror_columns(self, document: SubmissionDocument, fields: dict[str, Any]) -> None:
        document.user_id = str(fields.get("user_id") or document.user_id or "")
        document.category = str(
            fields.get("competition_category") or fields.get("category") or document.category or ""
        )
        document.status = str(fields.get("status") or document.status or "draft")
        document.last_modified = _parse_timestamp(fields.get("last_modified")) or document.last_modified

    # scores

    def upsert_score(
        self,
        *,
        submission_id: str,
        admin_id: str,
        admin_name: str,
        technical: int,
        story: int,
        creativity: int,
        overall: int,
        comments: str | None,
        scored_at: datetime,
    ) -> ApplicationScore:
        existing = self.session.scalar(
            select(ApplicationScore).where(
                ApplicationScore.submission_id == submission_id,
                ApplicationScore.admin_id == admin_id,
            )
        )
        values = {
            "admin_name": admin_name,
            "technical": technical,
            "story": story,
            "creativity": creativity,
            "overall": overall,
            "comments": comments,
            "scored_at": scored_at,
        }
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            row = existing
        else:
            row = ApplicationScore(submission_id=submission_id, admin_id=admin_id, **values)
            self.session.add(row)

        self.session.commit()
        self.session.refresh(row)
        return row

    def list_scores(self, submission_ids: Iterable[str]) -> list[ApplicationScore]:
        ids = list(submission_ids)
        if not ids:
            return []
        statement = (
            select(ApplicationScore)
            .where(ApplicationScore.submission_id.in_(ids))
            .order_by(ApplicationScore.scored_at.asc())
        )
        return list(self.session.scalars(statement).all())
