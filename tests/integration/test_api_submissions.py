from __future__ import annotations

import json

from fastapi.testclient import TestClient

from cifan.api.app import create_app
from cifan.db.repositories import Repository
from cifan.db.session import SessionLocal
from factories import PNG_HEADER, form_values

PDF_BYTES = b"%PDF-1.4 proof"
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 256


def _payload(category: str = "youth", **overrides) -> str:
    values = form_values(category, **overrides)
    values.pop("category")
    values.pop("user_id")
    return json.dumps(values)


def _sign_up(client: TestClient, email: str, *, verified: bool = True, role: str | None = None) -> dict[str, str]:
    response = client.post("/api/auth/signup", json={"email": email, "password": "lantern", "display_name": email})
    assert response.status_code == 200
    body = response.json()
    updates = {}
    if verified:
        updates["email_verified"] = True
    if role:
        updates["role"] = role
    if updates:
        with SessionLocal() as db:
            Repository(db).update_user(body["identity"]["uid"], **updates)
    client.cookies.clear()
    return {"Authorization": f"Bearer {body['token']}"}


def _all_files() -> dict:
    return {
        "film_file": ("film.mp4", MP4_BYTES, "video/mp4"),
        "poster_file": ("poster.png", PNG_HEADER, "image/png"),
        "proof_file": ("proof.pdf", PDF_BYTES, "application/pdf"),
    }


def test_health_endpoint() -> None:
    client = TestClient(create_app())
    assert client.get("/health").json() == {"status": "ok"}


def test_sign_up_verify_and_sign_out(monkeypatch) -> None:
    sent = []
    monkeypatch.setattr(
        "cifan.core.identity.EmailSender.send",
        lambda self, to, subject, body: sent.append(body) or True,
    )
    client = TestClient(create_app())

    signup = client.post("/api/auth/signup", json={"email": "nok@example.org", "password": "lantern"})
    assert signup.status_code == 200
    headers = {"Authorization": f"Bearer {signup.json()['token']}"}
    assert client.get("/api/auth/me", headers=headers).json()["email_verified"] is False

    token = sent[0].split("?token=", 1)[1].split()[0]
    verified = client.post("/api/auth/verify", json={"token": token})
    assert verified.status_code == 200
    assert verified.json()["email_verified"] is True

    assert client.post("/api/auth/signout", headers=headers).status_code == 200
    client.cookies.clear()
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_sign_in_with_wrong_password_is_unauthorized() -> None:
    client = TestClient(create_app())
    _sign_up(client, "nok@example.org")
    response = client.post("/api/auth/signin", json={"email": "nok@example.org", "password": "nope-nope"})
    assert response.status_code == 401


def test_unverified_user_can_save_draft_but_not_submit() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "nok@example.org", verified=False)

    draft = client.post(
        "/api/submissions/youth/draft",
        headers=headers,
        data={"payload": _payload()},
        files={"poster_file": ("poster.png", PNG_HEADER, "image/png")},
    )
    assert draft.status_code == 200
    assert draft.json()["is_draft"] is True

    final = client.post(
        "/api/submissions/youth", headers=headers, data={"payload": _payload()}, files=_all_files()
    )
    assert final.status_code == 403


def test_draft_files_are_served_back() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "nok@example.org")

    draft = client.post(
        "/api/submissions/youth/draft",
        headers=headers,
        data={"payload": _payload()},
        files={"poster_file": ("poster.png", PNG_HEADER, "image/png")},
    )
    application_id = draft.json()["submission_id"]

    listed = client.get("/api/applications", headers=headers).json()
    assert [item["id"] for item in listed] == [application_id]

    record = client.get(f"/api/applications/{application_id}", headers=headers).json()
    assert record["files"]["film_file"] is None
    poster_path = record["files"]["poster_file"]["storage_path"]

    download = client.get(f"/files/{poster_path}")
    assert download.status_code == 200
    assert download.content == PNG_HEADER
    assert client.get("/files/../secrets.txt").status_code == 404


def test_final_submission_reports_field_errors() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "nok@example.org")

    response = client.post(
        "/api/submissions/youth?lang=th",
        headers=headers,
        data={"payload": _payload(submitter_age=30, agreement4=False)},
        files=_all_files(),
    )
    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert errors["submitter_age"] == "อายุต้องอยู่ระหว่าง 12-18 ปี"
    assert "agreements" in errors


def test_final_submission_via_api() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "ana@example.org")

    response = client.post(
        "/api/submissions/world", headers=headers, data={"payload": _payload("world")}, files=_all_files()
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True

    record = client.get(f"/api/applications/{body['submission_id']}", headers=headers).json()
    assert record["status"] == "submitted"
    assert record["role_holder"]["name"] == "Ana Souza"


def test_submit_draft_after_adding_missing_poster() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "nok@example.org")
    files = _all_files()
    files.pop("poster_file")
    draft_id = client.post(
        "/api/submissions/youth/draft", headers=headers, data={"payload": _payload(duration=12)}, files=files
    ).json()["submission_id"]

    rejected = client.post(f"/api/applications/{draft_id}/submit", headers=headers)
    assert rejected.status_code == 422
    assert rejected.json()["detail"]["errors"] == ["Poster file is required"]

    replaced = client.put(
        f"/api/applications/{draft_id}/files/poster_file",
        headers=headers,
        files={"file": ("poster.png", PNG_HEADER, "image/png")},
    )
    assert replaced.status_code == 200

    submitted = client.post(f"/api/applications/{draft_id}/submit", headers=headers)
    assert submitted.status_code == 200
    assert submitted.json()["application"]["status"] == "submitted"
    assert submitted.json()["warnings"] == ["Film duration exceeds 10 minutes (recommended maximum)"]

    locked = client.put(
        f"/api/applications/{draft_id}/files/poster_file",
        headers=headers,
        files={"file": ("poster.png", PNG_HEADER, "image/png")},
    )
    assert locked.status_code == 409
    assert locked.json()["detail"] == "Cannot replace files in submitted applications"

    withdrawn = client.post(f"/api/applications/{draft_id}/withdraw", headers=headers)
    assert withdrawn.json()["status"] == "withdrawn"


def test_edit_and_delete_draft() -> None:
    client = TestClient(create_app())
    headers = _sign_up(client, "nok@example.org")
    draft_id = client.post(
        "/api/submissions/youth/draft", headers=headers, data={"payload": _payload()}
    ).json()["submission_id"]

    edited = client.patch(f"/api/applications/{draft_id}", headers=headers, json={"film_title": "Rain Lantern"})
    assert edited.json()["film_title"] == "Rain Lantern"
    bad = client.patch(f"/api/applications/{draft_id}", headers=headers, json={"status": "submitted"})
    assert bad.status_code == 400

    assert client.delete(f"/api/applications/{draft_id}", headers=headers).status_code == 200
    assert client.get("/api/applications", headers=headers).json() == []


def test_other_applicants_cannot_read_an_application() -> None:
    client = TestClient(create_app())
    owner = _sign_up(client, "nok@example.org")
    stranger = _sign_up(client, "stranger@example.org")
    draft_id = client.post(
        "/api/submissions/youth/draft", headers=owner, data={"payload": _payload()}
    ).json()["submission_id"]

    assert client.get(f"/api/applications/{draft_id}", headers=stranger).status_code == 403
    assert client.get("/api/applications/does-not-exist", headers=owner).status_code == 404
    assert client.get("/api/applications").status_code == 401
