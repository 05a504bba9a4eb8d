from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from cifan.core.documents import (
    build_draft_document,
    build_edit_update,
    build_submitted_document,
    classify_persistence_error,
    editable_fields,
    normalize_document,
)
from cifan.db.repositories import SERVER_TIMESTAMP
from cifan.errors import SubmissionError
from factories import ALL_FILES, file_metadata, make_form


def _files(*slots: str) -> dict:
    return {slot: file_metadata(slot) for slot in slots}


def test_draft_document_writes_absent_optionals_as_none() -> None:
    form = make_form(film_title_th="  ", chiangmai_connection="", submitter_custom_role=None)
    document = build_draft_document(form, _files("poster_file"), "youth_draft_1_abc")

    assert document["status"] == "draft"
    assert document["submitted_at"] is None
    assert document["film_title_th"] is None
    assert document["chiangmai_connection"] is None
    assert document["submitter_custom_role"] is None
    assert document["files"]["film_file"] is None
    assert document["files"]["proof_file"] is None
    assert document["files"]["poster_file"]["uploaded_at"] is SERVER_TIMESTAMP
    assert document["competition_category"] == document["category"] == "youth"
    assert document["agreements"] == {
        "copyright": True,
        "terms": True,
        "promotional": True,
        "final_decision": True,
    }


def test_world_document_uses_director_fields_without_nationality() -> None:
    document = build_draft_document(make_form("world"), None, "world_draft_1_abc")
    assert document["director_name"] == "Ana Souza"
    assert "submitter_name" not in document
    assert "nationality" not in document
    assert "school_name" not in document


def test_future_document_carries_university_affiliation() -> None:
    document = build_draft_document(make_form("future"), None, "future_draft_1_abc")
    assert document["university_name"] == "Chiang Mai University"
    assert document["faculty"] == "Mass Communication"
    assert document["nationality"] == "Thai"


def test_crew_records_keep_age_and_null_optionals() -> None:
    crew = [{"full_name": "Nok", "role": "Editor", "age": 15, "email": "", "school_name": "CMW"}]
    document = build_draft_document(make_form(crew_members=crew), None, "youth_draft_1_abc")
    member = document["crew_members"][0]
    assert member["age"] == 15
    assert member["email"] is None
    assert member["phone"] is None


def test_submitted_document_requires_all_file_metadata() -> None:
    with pytest.raises(SubmissionError) as exc_info:
        build_submitted_document(make_form(), _files("film_file", "poster_file"), "youth_1_abc")
    assert exc_info.value.code == "database-error"
    assert exc_info.value.stage == "saving"

    document = build_submitted_document(make_form(), _files(*ALL_FILES), "youth_1_abc")
    assert document["status"] == "submitted"
    assert document["submitted_at"] is SERVER_TIMESTAMP


def test_form_application_id_wins_over_generated_id() -> None:
    document = build_draft_document(make_form(application_id="client-42"), None, "youth_draft_1_abc")
    assert document["application_id"] == "client-42"
    document = build_draft_document(make_form(application_id=None), None, "youth_draft_1_abc")
    assert document["application_id"] == "youth_draft_1_abc"


@pytest.mark.parametrize(
    ("message", "code"),
    [
        ("attempt to write a readonly database", "database-unauthorized"),
        ("permission denied for table submissions", "database-unauthorized"),
        ("disk I/O error", "database-error"),
    ],
)
def test_classify_persistence_error(message: str, code: str) -> None:
    error = classify_persistence_error(OperationalError("INSERT", {}, Exception(message)), "Failed to save draft")
    assert error.code == code
    assert error.stage == "saving"


def test_normalize_reads_legacy_camel_case_documents() -> None:
    record = normalize_document(
        {
            "id": "legacy-1",
            "userId": "user-9",
            "applicationId": "app-9",
            "competitionCategory": "world",
            "status": "submitted",
            "filmTitle": "Old Reel",
            "director_name": "Kenji",
            "crewMembers": [{"fullName": "Aiko", "role": "Editor", "age": "33"}],
            "files": {
                "film_file": {
                    "fileName": "reel.mov",
                    "fileSize": 10,
                    "fileType": "video/quicktime",
                    "storagePath": "submissions/app-9/film/reel.mov",
                    "downloadURL": "http://files.test/reel.mov",
                    "uploadedAt": "2024-05-01T10:00:00+00:00",
                }
            },
            "agreements": {"copyright": True, "finalDecision": True},
            "submittedAt": "2024-05-01T10:00:00+00:00",
        }
    )

    assert record.user_id == "user-9"
    assert record.category == "world"
    assert record.film_title == "Old Reel"
    assert record.role_holder.name == "Kenji"
    assert record.crew_members[0].full_name == "Aiko"
    assert record.crew_members[0].age == 33
    assert record.files["film_file"].file_type == "video/quicktime"
    assert record.files["poster_file"] is None
    assert record.agreements["final_decision"] is True
    assert record.agreements["terms"] is False
    assert record.submitted_at.year == 2024


def test_editable_fields_exclude_identity_and_files() -> None:
    fields = editable_fields("youth")
    assert "film_title" in fields
    assert "school_name" in fields
    assert not fields & {"user_id", "application_id", "category", "film_file", "poster_file", "proof_file"}


def test_build_edit_update_merges_and_rejects_unknown_fields() -> None:
    document = build_draft_document(make_form(), None, "youth_draft_1_abc")
    record = normalize_document({**document, "id": "doc-1", "created_at": None, "last_modified": None})

    update = build_edit_update(record, {"film_title": "Day Market", "duration": "9"})
    assert update["film_title"] == "Day Market"
    assert update["duration"] == 9
    assert update["submitter_name"] == "Somchai Jaidee"
    assert update["last_modified"] is SERVER_TIMESTAMP

    with pytest.raises(ValueError, match="Fields cannot be edited: status, user_id"):
        build_edit_update(record, {"user_id": "someone-else", "status": "submitted"})
