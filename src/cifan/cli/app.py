from __future__ import annotations

import json
from pathlib import Path

import typer
import uvicorn

from cifan.api.app import create_app
from cifan.config import get_settings
from cifan.core.applications import ApplicationService
from cifan.core.export import ExportService, filter_applications
from cifan.core.identity import IdentityService, to_identity
from cifan.core.review import ADMIN_ROLES, ReviewService
from cifan.db.init import init_database
from cifan.db.repositories import Repository
from cifan.db.session import SessionLocal
from cifan.errors import ApplicationNotFoundError, AuthenticationError
from cifan.logging_config import configure_logging
from cifan.types import ExportOptions, Identity, ReviewFilters

app = typer.Typer(help="CIFAN submissions CLI")
users_app = typer.Typer(help="Manage accounts and admin roles")
applications_app = typer.Typer(help="Inspect submitted applications")

app.add_typer(users_app, name="users")
app.add_typer(applications_app, name="applications")

CLI_ADMIN = Identity(
    uid="cli",
    email="cli@localhost",
    email_verified=True,
    display_name="CLI",
    role="super-admin",
)

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


@app.command("init")
def init_cmd() -> None:
    """Create data directories and database tables."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@users_app.command("create")
def users_create(
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    name: str = typer.Option("", "--name"),
    role: str = typer.Option("applicant", "--role"),
    verified: bool = typer.Option(False, "--verified"),
) -> None:
    configure_logging()
    ensure_initialized()
    if role != "applicant" and role not in ADMIN_ROLES:
        raise typer.BadParameter(f"role must be 'applicant' or one of {', '.join(ADMIN_ROLES)}")

    with SessionLocal() as db:
        try:
            grant = IdentityService(db).sign_up(email, password, name)
        except AuthenticationError as exc:
            raise typer.BadParameter(str(exc)) from exc
        repo = Repository(db)
        user = repo.update_user(grant.identity.uid, role=role, email_verified=verified)
        typer.echo(json.dumps(to_identity(user).model_dump(), indent=2))


@users_app.command("promote")
def users_promote(
    email: str = typer.Option(..., "--email"),
    role: str = typer.Option("admin", "--role"),
) -> None:
    configure_logging()
    ensure_initialized()
    if role not in ADMIN_ROLES and role != "applicant":
        raise typer.BadParameter(f"role must be 'applicant' or one of {', '.join(ADMIN_ROLES)}")

    with SessionLocal() as db:
        repo = Repository(db)
        user = repo.get_user_by_email(email)
        if user is None:
            raise typer.BadParameter(f"user {email} not found")
        user = repo.update_user(user.id, role=role)
        typer.echo(json.dumps(to_identity(user).model_dump(), indent=2))


@users_app.command("verify")
def users_verify(email: str = typer.Option(..., "--email")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        repo = Repository(db)
        user = repo.get_user_by_email(email)
        if user is None:
            raise typer.BadParameter(f"user {email} not found")
        user = repo.update_user(user.id, email_verified=True)
        typer.echo(json.dumps(to_identity(user).model_dump(), indent=2))


@users_app.command("list")
def users_list() -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        users = Repository(db).list_users()
        typer.echo(json.dumps([to_identity(user).model_dump() for user in users], indent=2))


@applications_app.command("list")
def applications_list(
    category: str | None = typer.Option(None, "--category"),
    status: str | None = typer.Option(None, "--status"),
    search: str = typer.Option("", "--search"),
    limit: int = typer.Option(50, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    filters = ReviewFilters(search=search, category=category, status=status, per_page=limit)
    with SessionLocal() as db:
        page = ReviewService(db, CLI_ADMIN).list_for_review(filters)
        typer.echo(
            json.dumps(
                {
                    "total": page.total_items,
                    "items": [
                        {
                            "id": record.id,
                            "film_title": record.film_title,
                            "category": record.category,
                            "status": record.status,
                            "review_status": record.review_status,
                            "average_score": round(record.average_score, 1),
                            "last_modified": record.last_modified.isoformat() if record.last_modified else None,
                        }
                        for record in page.items
                    ],
                },
                indent=2,
                ensure_ascii=False,
            )
        )


@applications_app.command("show")
def applications_show(application_id: str = typer.Option(..., "--id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            record = ApplicationService(db).get_application(application_id)
        except ApplicationNotFoundError as exc:
            raise typer.BadParameter(str(exc)) from exc
        typer.echo(json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False))


@app.command("export")
def export_cmd(
    output: Path = typer.Option(..., "--output"),
    format: str = typer.Option("csv", "--format"),
    include_scores: bool = typer.Option(False, "--include-scores"),
    include_notes: bool = typer.Option(False, "--include-notes"),
    category: list[str] = typer.Option([], "--category"),
    status: list[str] = typer.Option([], "--status"),
) -> None:
    configure_logging()
    ensure_initialized()
    options = ExportOptions(
        format=format,
        include_scores=include_scores,
        include_notes=include_notes,
        categories=category,
        statuses=status,
    )
    with SessionLocal() as db:
        records = ReviewService(db, CLI_ADMIN).all_records()
    content = ExportService().export_applications(records, options)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(content)
    rows = len(filter_applications(records, options))
    typer.echo(json.dumps({"output": str(output), "rows": rows}, indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
