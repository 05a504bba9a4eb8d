from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from cifan.storage.local import LocalFile

Category = Literal["youth", "future", "world"]
FilmFormat = Literal["live-action", "animation"]
ApplicationStatus = Literal["draft", "submitted", "withdrawn", "deleted"]
ReviewStatus = Literal["pending", "in-progress", "reviewed", "approved", "rejected"]
FileSlot = Literal["film_file", "poster_file", "proof_file"]
FileKind = Literal["film", "poster", "proof"]
ProgressStage = Literal["validating", "uploading", "saving", "updating", "complete", "error"]
Language = Literal["th", "en"]

FILE_SLOTS: tuple[FileSlot, ...] = ("film_file", "poster_file", "proof_file")
SLOT_KINDS: dict[str, FileKind] = {"film_file": "film", "poster_file": "poster", "proof_file": "proof"}
CATEGORIES: tuple[Category, ...] = ("youth", "future", "world")


class CrewMember(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    full_name: str = ""
    full_name_th: str | None = None
    role: str = ""
    custom_role: str | None = None
    age: int | None = None
    phone: str | None = None
    email: str | None = None
    school_name: str | None = None
    student_id: str | None = None


class RoleHolder(BaseModel):
    """The submitter (Youth/Future) or director (World) of a film."""

    name: str = ""
    name_th: str | None = None
    age: int | None = None
    phone: str = ""
    email: str = ""
    role: str = ""
    custom_role: str | None = None


class BaseForm(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: str | None = None
    application_id: str | None = None

    film_title: str = ""
    film_title_th: str | None = None
    genres: list[str] = Field(default_factory=list)
    format: FilmFormat | None = None
    duration: int | None = None
    synopsis: str = ""
    chiangmai_connection: str | None = None

    crew_members: list[CrewMember] = Field(default_factory=list)

    film_file: LocalFile | None = None
    poster_file: LocalFile | None = None
    proof_file: LocalFile | None = None

    agreement1: bool = False
    agreement2: bool = False
    agreement3: bool = False
    agreement4: bool = False

    created_at: datetime | None = None

    @field_validator("format", mode="before")
    @classmethod
    def empty_format(cls, value: Any) -> Any:
        return value or None

    @field_validator("duration", mode="before")
    @classmethod
    def empty_duration(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        return value

    def files(self) -> dict[FileSlot, LocalFile | None]:
        return {slot: getattr(self, slot) for slot in FILE_SLOTS}

    def present_files(self) -> dict[FileSlot, LocalFile]:
        return {slot: file for slot, file in self.files().items() if file is not None}

    def agreements(self) -> dict[str, bool]:
        return {
            "copyright": self.agreement1,
            "terms": self.agreement2,
            "promotional": self.agreement3,
            "final_decision": self.agreement4,
        }


class SubmitterForm(BaseForm):
    nationality: str = "International"
    submitter_name: str = ""
    submitter_name_th: str | None = None
    submitter_age: int | None = None
    submitter_phone: str = ""
    submitter_email: str = ""
    submitter_role: str = ""
    submitter_custom_role: str | None = None

    @field_validator("submitter_age", mode="before")
    @classmethod
    def empty_age(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        return value

    def role_holder(self) -> RoleHolder:
        return RoleHolder(
            name=self.submitter_name,
            name_th=self.submitter_name_th,
            age=self.submitter_age,
            phone=self.submitter_phone,
            email=self.submitter_email,
            role=self.submitter_role,
            custom_role=self.submitter_custom_role,
        )


class YouthForm(SubmitterForm):
    category: Literal["youth"] = "youth"
    school_name: str = ""
    student_id: str = ""

    def affiliation(self) -> dict[str, str]:
        return {"school_name": self.school_name, "student_id": self.student_id}


class FutureForm(SubmitterForm):
    category: Literal["future"] = "future"
    university_name: str = ""
    faculty: str = ""
    university_id: str = ""

    def affiliation(self) -> dict[str, str]:
        return {
            "university_name": self.university_name,
            "faculty": self.faculty,
            "university_id": self.university_id,
        }


class WorldForm(BaseForm):
    category: Literal["world"] = "world"
    director_name: str = ""
    director_name_th: str | None = None
    director_age: int | None = None
    director_phone: str = ""
    director_email: str = ""
    director_role: str = ""
    director_custom_role: str | None = None

    @field_validator("director_age", mode="before")
    @classmethod
    def empty_age(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        return value

    def role_holder(self) -> RoleHolder:
        return RoleHolder(
            name=self.director_name,
            name_th=self.director_name_th,
            age=self.director_age,
            phone=self.director_phone,
            email=self.director_email,
            role=self.director_role,
            custom_role=self.director_custom_role,
        )

    def affiliation(self) -> dict[str, str]:
        return {}


SubmissionForm = Annotated[YouthForm | FutureForm | WorldForm, Field(discriminator="category")]

FORM_CLASSES: dict[str, type[BaseForm]] = {
    "youth": YouthForm,
    "future": FutureForm,
    "world": WorldForm,
}


class FileMetadata(BaseModel):
    file_name: str
    file_size: int
    file_type: str
    storage_path: str
    download_url: str
    uploaded_at: datetime


class ValidationRules(BaseModel):
    max_size: int
    allowed_types: list[str]
    min_duration: float | None = None
    max_duration: float | None = None


class FileValidationResult(BaseModel):
    is_valid: bool
    error: str | None = None


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SubmissionProgress(BaseModel):
    stage: ProgressStage
    progress: float
    message: str
    file_progress: dict[str, float] | None = None


class SubmissionResult(BaseModel):
    success: bool
    submission_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    is_draft: bool | None = None


class ScoreInput(BaseModel):
    technical: int = Field(ge=0, le=10)
    story: int = Field(ge=0, le=10)
    creativity: int = Field(ge=0, le=10)
    overall: int = Field(ge=0, le=10)
    comments: str | None = None


class ScoreEntry(ScoreInput):
    admin_id: str
    admin_name: str = ""
    scored_at: datetime

    @computed_field
    @property
    def total_score(self) -> int:
        return self.technical + self.story + self.creativity + self.overall


class ApplicationRecord(BaseModel):
    id: str
    user_id: str
    application_id: str
    category: Category
    status: ApplicationStatus

    film_title: str = ""
    film_title_th: str | None = None
    genres: list[str] = Field(default_factory=list)
    format: str | None = None
    duration: int | None = None
    synopsis: str = ""
    chiangmai_connection: str | None = None

    nationality: str | None = None
    role_holder: RoleHolder = Field(default_factory=RoleHolder)
    affiliation: dict[str, str | None] = Field(default_factory=dict)
    crew_members: list[CrewMember] = Field(default_factory=list)

    files: dict[str, FileMetadata | None] = Field(default_factory=dict)
    agreements: dict[str, bool] = Field(default_factory=dict)

    created_at: datetime | None = None
    last_modified: datetime | None = None
    submitted_at: datetime | None = None
    withdrawn_at: datetime | None = None
    deleted_at: datetime | None = None

    scores: list[ScoreEntry] = Field(default_factory=list)
    admin_notes: str = ""
    review_status: ReviewStatus = "pending"
    flagged: bool = False
    flag_reason: str | None = None
    assigned_reviewers: list[str] = Field(default_factory=list)
    last_reviewed_at: datetime | None = None

    @computed_field
    @property
    def average_score(self) -> float:
        if not self.scores:
            return 0.0
        return sum(score.total_score for score in self.scores) / len(self.scores)


class Identity(BaseModel):
    uid: str
    email: str
    email_verified: bool
    display_name: str = ""
    role: str = "applicant"


class ExportOptions(BaseModel):
    format: Literal["csv", "excel"] = "csv"
    include_scores: bool = False
    include_notes: bool = False
    categories: list[Category] = Field(default_factory=list)
    statuses: list[ApplicationStatus] = Field(default_factory=list)
    date_start: datetime | None = None
    date_end: datetime | None = None


ReviewSort = Literal["newest", "oldest", "alphabetical", "category", "status"]


class ReviewFilters(BaseModel):
    search: str = ""
    category: Category | None = None
    status: ApplicationStatus | None = None
    review_status: ReviewStatus | None = None
    nationality: str | None = None
    date_start: datetime | None = None
    date_end: datetime | None = None
    sort_by: ReviewSort = "newest"
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=200)


class ReviewPage(BaseModel):
    items: list[ApplicationRecord]
    page: int
    per_page: int
    total_items: int
    total_pages: int


class DashboardStats(BaseModel):
    total_applications: int
    by_category: dict[str, int]
    by_status: dict[str, int]
    by_review_status: dict[str, int]
    recent_submissions: int
    genres: dict[str, int]
    nationalities: dict[str, int]


ExportStage = Literal["preparing", "processing", "generating", "complete", "error"]


class ExportProgress(BaseModel):
    stage: ExportStage
    progress: float
    message: str
    total: int | None = None
    current: int | None = None


class SessionGrant(BaseModel):
    identity: Identity
    token: str
    expires_at: datetime
