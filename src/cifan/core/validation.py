from __future__ import annotations

import re

from cifan.config import get_settings
from cifan.core.file_transfer import FILE_VALIDATION_RULES, validate_file
from cifan.errors import SubmissionError
from cifan.i18n import validation_message
from cifan.types import (
    ApplicationRecord,
    BaseForm,
    Category,
    CrewMember,
    FutureForm,
    Language,
    ValidationResult,
    YouthForm,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

AGE_LIMITS: dict[Category, tuple[int, int] | None] = {
    "youth": (12, 18),
    "future": (18, 25),
    "world": None,
}

_REQUIRED_FILES = (
    ("film_file", "film", "Film"),
    ("poster_file", "poster", "Poster"),
    ("proof_file", "proof", "Proof"),
)


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


def validate_age(age: int, category: Category) -> bool:
    limits = AGE_LIMITS[category]
    if limits is None:
        return age > 0
    return limits[0] <= age <= limits[1]


def validate_form_data(form: BaseForm, is_draft: bool = False) -> None:
    if not form.user_id:
        raise SubmissionError(
            "User authentication required. Please sign in and try again.",
            "missing-user-id",
            "validation",
        )

    if is_draft:
        return

    for slot, kind, label in _REQUIRED_FILES:
        if getattr(form, slot) is None:
            raise SubmissionError(f"{label} file is required", f"missing-{kind}-file", "validation")

    for slot, kind, label in _REQUIRED_FILES:
        result = validate_file(getattr(form, slot), FILE_VALIDATION_RULES[kind])
        if not result.is_valid:
            raise SubmissionError(
                f"{label} file validation failed: {result.error}",
                f"invalid-{kind}-file",
                "validation",
            )


def validate_before_submit(application: ApplicationRecord) -> ValidationResult:
    settings = get_settings()
    errors: list[str] = []
    warnings: list[str] = []

    if not application.film_title.strip():
        errors.append("Film title is required")
    if not application.genres:
        errors.append("At least one genre must be selected")
    if not application.format:
        errors.append("Film format must be selected")
    if not application.duration or application.duration <= 0:
        errors.append("Film duration must be specified")
    if not application.synopsis.strip():
        errors.append("Synopsis is required")

    files = application.files
    if not files.get("film_file"):
        errors.append("Film file is required")
    if not files.get("poster_file"):
        errors.append("Poster file is required")
    if not files.get("proof_file"):
        errors.append("Proof file is required")

    if application.duration and application.duration > 0:
        if application.duration < settings.recommended_duration_min:
            warnings.append(
                f"Film duration is less than {settings.recommended_duration_min} minutes "
                "(recommended minimum)"
            )
        if application.duration > settings.recommended_duration_max:
            warnings.append(
                f"Film duration exceeds {settings.recommended_duration_max} minutes "
                "(recommended maximum)"
            )

    film = files.get("film_file")
    if film and film.file_size > settings.large_film_warning_bytes:
        limit_mb = settings.large_film_warning_bytes // (1024 * 1024)
        warnings.append(
            f"Film file size is quite large (>{limit_mb}MB). Consider compression for faster upload."
        )

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate_form_fields(form: BaseForm, lang: Language = "en") -> dict[str, str]:
    """Field-by-field check of a final submission, keyed by form field name."""
    errors: dict[str, str] = {}
    required = validation_message("required", lang)

    if not form.film_title.strip():
        errors["film_title"] = required
    if not form.genres:
        errors["genres"] = required
    if not form.format:
        errors["format"] = validation_message("format_required", lang)
    if not form.duration or form.duration <= 0:
        errors["duration"] = validation_message("invalid_duration", lang)
    if not form.synopsis.strip():
        errors["synopsis"] = required

    prefix = "director" if form.category == "world" else "submitter"
    holder = form.role_holder()
    if not holder.name.strip():
        errors[f"{prefix}_name"] = required
    if holder.age is None:
        errors[f"{prefix}_age"] = required
    elif not validate_age(holder.age, form.category):
        errors[f"{prefix}_age"] = _age_message(form.category, lang)
    if not holder.phone.strip():
        errors[f"{prefix}_phone"] = required
    if not holder.email.strip():
        errors[f"{prefix}_email"] = required
    elif not validate_email(holder.email):
        errors[f"{prefix}_email"] = validation_message("invalid_email", lang)
    if not holder.role:
        errors[f"{prefix}_role"] = required
    elif holder.role == "Other" and not (holder.custom_role or "").strip():
        errors[f"{prefix}_custom_role"] = required

    if isinstance(form, (YouthForm, FutureForm)):
        for field, value in form.affiliation().items():
            if not value.strip():
                errors[field] = required

    for index, member in enumerate(form.crew_members):
        for field, message in validate_crew_member(member, form.category, lang).items():
            errors[f"crew_members.{index}.{field}"] = message

    if not all(form.agreements().values()):
        errors["agreements"] = validation_message("all_agreements_required", lang)

    return errors


def validate_crew_member(member: CrewMember, category: Category, lang: Language = "en") -> dict[str, str]:
    errors: dict[str, str] = {}
    required = validation_message("required", lang)

    if not member.full_name.strip():
        errors["full_name"] = required
    if not member.role:
        errors["role"] = required
    elif member.role == "Other" and not (member.custom_role or "").strip():
        errors["custom_role"] = required

    if member.age is None:
        errors["age"] = required
    elif not validate_age(member.age, category):
        errors["age"] = _age_message(category, lang)

    if member.email and not validate_email(member.email):
        errors["email"] = validation_message("invalid_email", lang)

    if category != "world" and not (member.school_name or "").strip():
        errors["school_name"] = required

    return errors


def _age_message(category: Category, lang: Language) -> str:
    limits = AGE_LIMITS[category] or (1, 100)
    return validation_message("invalid_age", lang, min=limits[0], max=limits[1])
