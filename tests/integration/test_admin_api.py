from __future__ import annotations

from fastapi.testclient import TestClient

from cifan.api.app import create_app
from cifan.db.repositories import Repository
from cifan.db.session import SessionLocal
from factories import create_document


def _admin_headers(client: TestClient, email: str, role: str) -> dict[str, str]:
    response = client.post("/api/auth/signup", json={"email": email, "password": "lantern", "display_name": email})
    assert response.status_code == 200
    body = response.json()
    with SessionLocal() as db:
        Repository(db).update_user(body["identity"]["uid"], email_verified=True, role=role)
    client.cookies.clear()
    return {"Authorization": f"Bearer {body['token']}"}


def test_review_patch_refused_for_one_field_changes_nothing() -> None:
    client = TestClient(create_app())
    moderator = _admin_headers(client, "mod@example.org", "moderator")
    with SessionLocal() as db:
        doc_id = create_document(db, status="submitted")

    response = client.patch(
        f"/api/admin/applications/{doc_id}/review",
        json={"review_status": "in-progress", "assigned_reviewers": ["judge-1"]},
        headers=moderator,
    )
    assert response.status_code == 403

    record = client.get(f"/api/admin/applications/{doc_id}", headers=moderator).json()
    assert record["review_status"] == "pending"
    assert record["assigned_reviewers"] == []


def test_review_patch_with_several_fields() -> None:
    client = TestClient(create_app())
    admin = _admin_headers(client, "lead@example.org", "admin")
    with SessionLocal() as db:
        doc_id = create_document(db, status="submitted")

    response = client.patch(
        f"/api/admin/applications/{doc_id}/review",
        json={"review_status": "reviewed", "admin_notes": "Strong sound", "assigned_reviewers": ["j1", "j1"]},
        headers=admin,
    )
    assert response.status_code == 200
    body = response.json()
    assert (body["review_status"], body["admin_notes"], body["assigned_reviewers"]) == (
        "reviewed",
        "Strong sound",
        ["j1"],
    )


def test_applications_report_lists_filtered_applications() -> None:
    client = TestClient(create_app())
    judge = _admin_headers(client, "judge@example.org", "moderator")
    with SessionLocal() as db:
        create_document(db, status="submitted", film_title="Lantern Street")
        create_document(db, category="world", status="submitted", film_title="Harbour Lights")
        create_document(db, status="draft", film_title="Unfinished")

    response = client.get("/admin/reports/applications?statuses=submitted&categories=youth", headers=judge)

    assert response.status_code == 200
    assert "CIFAN_Applications_Report_" in response.headers["content-disposition"]
    assert "Total Applications: 1" in response.text
    assert "Lantern Street" in response.text
    assert "Harbour Lights" not in response.text
    assert "Unfinished" not in response.text


def test_dashboard_report_shows_category_breakdown() -> None:
    client = TestClient(create_app())
    viewer = _admin_headers(client, "viewer@example.org", "viewer")
    with SessionLocal() as db:
        create_document(db, status="submitted")
        create_document(db, category="world", status="submitted")
        create_document(db, category="world", status="draft")

    response = client.get("/admin/reports/dashboard?lang=en", headers=viewer)

    assert response.status_code == 200
    assert "CIFAN_Dashboard_Report_" in response.headers["content-disposition"]
    assert "Total Applications: 3" in response.text
    assert "World Fantastic Short Film Award" in response.text
    assert "66.7%" in response.text


def test_reports_require_admin_role() -> None:
    client = TestClient(create_app())
    applicant = _admin_headers(client, "nok@example.org", "applicant")
    assert client.get("/admin/reports/dashboard", headers=applicant).status_code == 403
    assert client.get("/admin/reports/applications", headers=applicant).status_code == 403
