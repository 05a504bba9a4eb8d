from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta
from typing import Literal

from sqlalchemy.orm import Session

from cifan.config import Settings, get_settings
from cifan.core.documents import normalize_document
from cifan.db.models import ApplicationScore
from cifan.db.repositories import SERVER_TIMESTAMP, Repository
from cifan.errors import ApplicationNotFoundError, ApplicationStateError, PermissionDeniedError
from cifan.types import (
    CATEGORIES,
    ApplicationRecord,
    DashboardStats,
    Identity,
    ReviewFilters,
    ReviewPage,
    ReviewStatus,
    ScoreEntry,
    ScoreInput,
)

logger = logging.getLogger(__name__)

AdminLevel = Literal["viewer", "scorer", "manager", "super"]

VIEW_DASHBOARD = "view_dashboard"
VIEW_APPLICATIONS = "view_applications"
SCORE_APPLICATIONS = "score_applications"
APPROVE_APPLICATIONS = "approve_applications"
FLAG_APPLICATIONS = "flag_applications"
EDIT_APPLICATIONS = "edit_applications"
EXPORT_DATA = "export_data"
MANAGE_USERS = "manage_users"

_VIEWER = frozenset({VIEW_DASHBOARD, VIEW_APPLICATIONS})
_SCORER = _VIEWER | {SCORE_APPLICATIONS, FLAG_APPLICATIONS, EXPORT_DATA}
_MANAGER = _SCORER | {APPROVE_APPLICATIONS, EDIT_APPLICATIONS}
_SUPER = _MANAGER | {MANAGE_USERS}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "viewer": _VIEWER,
    "moderator": _SCORER,
    "admin": _MANAGER,
    "super-admin": _SUPER,
}

ADMIN_ROLES = tuple(ROLE_PERMISSIONS)

_DECISION_STATUSES = {"approved", "rejected"}
_LISTED_STATUSES = ("draft", "submitted", "withdrawn")


def permissions_for(role: str) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def admin_level(role: str) -> AdminLevel:
    permissions = permissions_for(role)
    if MANAGE_USERS in permissions:
        return "super"
    if APPROVE_APPLICATIONS in permissions:
        return "manager"
    if SCORE_APPLICATIONS in permissions:
        return "scorer"
    return "viewer"


def is_admin(identity: Identity) -> bool:
    return identity.role in ROLE_PERMISSIONS


def require_permission(identity: Identity, permission: str) -> None:
    if permission not in permissions_for(identity.role):
        raise PermissionDeniedError(f"Missing admin permission: {permission}")


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _activity_date(record: ApplicationRecord) -> datetime:
    return _aware(record.submitted_at or record.created_at) or datetime.min.replace(tzinfo=UTC)


class ReviewService:
    """Admin side of an application: scores, review status, notes and flags."""

    def __init__(self, session: Session, admin: Identity, *, settings: Settings | None = None):
        self.repo = Repository(session)
        self.admin = admin
        self.settings = settings or get_settings()

    def get_application(self, application_id: str) -> ApplicationRecord:
        require_permission(self.admin, VIEW_APPLICATIONS)
        return self._load(application_id)

    def save_score(self, application_id: str, score: ScoreInput) -> ScoreEntry:
        require_permission(self.admin, SCORE_APPLICATIONS)
        record = self._load(application_id)
        if record.status != "submitted":
            raise ApplicationStateError("Only submitted applications can be scored")

        row = self.repo.upsert_score(
            submission_id=application_id,
            admin_id=self.admin.uid,
            admin_name=self.admin.display_name or self.admin.email,
            technical=score.technical,
            story=score.story,
            creativity=score.creativity,
            overall=score.overall,
            comments=score.comments,
            scored_at=datetime.now(UTC),
        )
        self._touch(application_id, {})
        entry = ScoreEntry(
            technical=row.technical,
            story=row.story,
            creativity=row.creativity,
            overall=row.overall,
            comments=row.comments,
            admin_id=row.admin_id,
            admin_name=row.admin_name,
            scored_at=row.scored_at,
        )
        logger.info(
            "Score saved application_id=%s admin_id=%s total=%s",
            application_id,
            self.admin.uid,
            entry.total_score,
        )
        return entry

    def set_review_status(self, application_id: str, review_status: ReviewStatus) -> ApplicationRecord:
        return self.apply_review_update(application_id, {"review_status": review_status})

    def update_notes(self, application_id: str, notes: str) -> ApplicationRecord:
        return self.apply_review_update(application_id, {"admin_notes": notes})

    def set_flag(self, application_id: str, flagged: bool, reason: str | None = None) -> ApplicationRecord:
        return self.apply_review_update(application_id, {"flagged": flagged, "flag_reason": reason})

    def assign_reviewers(self, application_id: str, reviewer_ids: list[str]) -> ApplicationRecord:
        return self.apply_review_update(application_id, {"assigned_reviewers": reviewer_ids})

    def apply_review_update(self, application_id: str, changes: dict) -> ApplicationRecord:
        """Apply several review changes as one write.

        Every permission the changes need is checked before anything is stored,
        so a refused change leaves the document untouched.
        """
        fields: dict = {}
        needed = {VIEW_APPLICATIONS}

        review_status = changes.get("review_status")
        if review_status is not None:
            needed.add(APPROVE_APPLICATIONS if review_status in _DECISION_STATUSES else SCORE_APPLICATIONS)
            fields["review_status"] = review_status
        if "admin_notes" in changes:
            needed.add(SCORE_APPLICATIONS)
            fields["admin_notes"] = changes["admin_notes"] or ""
        flagged = changes.get("flagged")
        if flagged is not None:
            needed.add(FLAG_APPLICATIONS)
            fields["flagged"] = flagged
            fields["flag_reason"] = (changes.get("flag_reason") or None) if flagged else None
        if "assigned_reviewers" in changes:
            needed.add(EDIT_APPLICATIONS)
            fields["assigned_reviewers"] = list(dict.fromkeys(changes["assigned_reviewers"] or []))

        for permission in sorted(needed):
            require_permission(self.admin, permission)
        record = self._load(application_id)
        if not fields:
            return record
        return self._touch(application_id, fields)

    def list_for_review(self, filters: ReviewFilters | None = None) -> ReviewPage:
        require_permission(self.admin, VIEW_APPLICATIONS)
        filters = filters or ReviewFilters()

        records = self._records(
            statuses=[filters.status] if filters.status else _LISTED_STATUSES,
            categories=[filters.category] if filters.category else None,
        )
        matched = [record for record in records if self._matches(record, filters)]
        matched.sort(key=_SORT_KEYS[filters.sort_by], reverse=filters.sort_by == "newest")

        total = len(matched)
        start = (filters.page - 1) * filters.per_page
        return ReviewPage(
            items=matched[start : start + filters.per_page],
            page=filters.page,
            per_page=filters.per_page,
            total_items=total,
            total_pages=max(1, math.ceil(total / filters.per_page)),
        )

    def all_records(self) -> list[ApplicationRecord]:
        require_permission(self.admin, VIEW_APPLICATIONS)
        return self._records(statuses=_LISTED_STATUSES)

    def dashboard_stats(self) -> DashboardStats:
        require_permission(self.admin, VIEW_DASHBOARD)
        records = self._records(statuses=_LISTED_STATUSES, with_scores=False)
        since = datetime.now(UTC) - timedelta(days=self.settings.recent_submission_days)

        by_category = {category: 0 for category in CATEGORIES}
        by_status = {status: 0 for status in _LISTED_STATUSES}
        genres: Counter[str] = Counter()
        nationalities: Counter[str] = Counter()
        review_states: Counter[str] = Counter()
        recent = 0
        for record in records:
            by_category[record.category] += 1
            by_status[record.status] += 1
            genres.update(record.genres)
            nationalities[record.nationality or "International"] += 1
            if record.status == "submitted":
                review_states[record.review_status] += 1
                submitted_at = _aware(record.submitted_at)
                if submitted_at and submitted_at >= since:
                    recent += 1

        return DashboardStats(
            total_applications=len(records),
            by_category=by_category,
            by_status=by_status,
            by_review_status=dict(review_states),
            recent_submissions=recent,
            genres=dict(genres.most_common()),
            nationalities=dict(nationalities.most_common()),
        )

    def _load(self, application_id: str) -> ApplicationRecord:
        document = self.repo.get_document(application_id)
        if document is None or document.get("status") == "deleted":
            raise ApplicationNotFoundError("Application not found")
        return normalize_document(document, self.repo.list_scores([application_id]))

    def _touch(self, application_id: str, fields: dict) -> ApplicationRecord:
        self.repo.update_document(application_id, {**fields, "last_reviewed_at": SERVER_TIMESTAMP})
        if fields:
            logger.info(
                "Review updated application_id=%s admin_id=%s fields=%s",
                application_id,
                self.admin.uid,
                sorted(fields),
            )
        return self._load(application_id)

    def _records(self, *, statuses, categories=None, with_scores: bool = True) -> list[ApplicationRecord]:
        documents = self.repo.list_documents(statuses=statuses, categories=categories)
        scores: dict[str, list[ApplicationScore]] = defaultdict(list)
        if with_scores:
            for row in self.repo.list_scores(document["id"] for document in documents):
                scores[row.submission_id].append(row)
        return [normalize_document(document, scores.get(document["id"])) for document in documents]

    @staticmethod
    def _matches(record: ApplicationRecord, filters: ReviewFilters) -> bool:
        if filters.search:
            needle = filters.search.strip().lower()
            haystack = (
                record.film_title,
                record.film_title_th or "",
                record.role_holder.name,
                record.role_holder.name_th or "",
            )
            if not any(needle in value.lower() for value in haystack):
                return False
        if filters.review_status and record.review_status != filters.review_status:
            return False
        if filters.nationality and (record.nationality or "International") != filters.nationality:
            return False

        activity = _activity_date(record)
        if filters.date_start and activity < _aware(filters.date_start):
            return False
        if filters.date_end and activity > _aware(filters.date_end):
            return False
        return True


_SORT_KEYS = {
    "newest": _activity_date,
    "oldest": _activity_date,
    "alphabetical": lambda record: record.film_title.lower(),
    "category": lambda record: record.category,
    "status": lambda record: record.status,
}
