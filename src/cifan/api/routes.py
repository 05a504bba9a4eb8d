from __future__ import annotations

import json
from typing import Any

from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from cifan.api.deps import (
    SESSION_COOKIE,
    get_db,
    get_language,
    require_identity,
    require_verified,
    session_token,
)
from cifan.api.schemas import (
    FieldErrorsResponse,
    MessageResponse,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    SubmitApplicationResponse,
    VerifyEmailRequest,
)
from cifan.config import get_settings
from cifan.core.applications import ApplicationService
from cifan.core.identity import IdentityService
from cifan.core.runtime import get_event_bus, get_storage
from cifan.core.submission import SubmissionOrchestrator
from cifan.core.validation import validate_before_submit, validate_form_fields
from cifan.errors import (
    ApplicationNotFoundError,
    ApplicationStateError,
    ApplicationValidationError,
    AuthenticationError,
    PermissionDeniedError,
    StorageError,
    UploadError,
)
from cifan.i18n import PERMISSION_CODES, error_message
from cifan.storage.local import LocalFile
from cifan.types import (
    FILE_SLOTS,
    FORM_CLASSES,
    ApplicationRecord,
    BaseForm,
    Category,
    FileMetadata,
    FileSlot,
    Identity,
    Language,
    SessionGrant,
    SubmissionResult,
)

router = APIRouter(prefix="/api", tags=["api"])
files_router = APIRouter(tags=["files"])


def http_error(exc: Exception, lang: Language = "en") -> HTTPException:
    if isinstance(exc, ApplicationNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ApplicationValidationError):
        return HTTPException(status_code=422, detail={"message": str(exc), "errors": exc.errors})
    if isinstance(exc, ApplicationStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UploadError):
        status = 403 if exc.code in PERMISSION_CODES else 502
        return HTTPException(status_code=status, detail=error_message(exc.code, lang, exc.message))
    return HTTPException(status_code=400, detail=str(exc))


def _session_response(response: Response, grant: SessionGrant) -> SessionResponse:
    max_age = get_settings().session_ttl_min * 60
    response.set_cookie(SESSION_COOKIE, grant.token, max_age=max_age, httponly=True, samesite="lax")
    return SessionResponse(token=grant.token, expires_at=grant.expires_at, identity=grant.identity)


def to_local_file(upload: UploadFile) -> LocalFile:
    size = upload.size
    if size is None:
        upload.file.seek(0, 2)
        size = upload.file.tell()
        upload.file.seek(0)
    return LocalFile(
        name=upload.filename or "upload.bin",
        content_type=upload.content_type or "application/octet-stream",
        size=size,
        stream=upload.file,
    )


def parse_form(
    category: Category,
    payload: str,
    identity: Identity,
    uploads: dict[FileSlot, UploadFile | None],
) -> BaseForm:
    try:
        data: dict[str, Any] = json.loads(payload or "{}")
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="payload must be a JSON object")

    for slot in FILE_SLOTS:
        data.pop(slot, None)
    data.update({"category": category, "user_id": identity.uid})
    data.update({slot: to_local_file(upload) for slot, upload in uploads.items() if upload and upload.filename})

    try:
        return FORM_CLASSES[category].model_validate(data)
    except ValidationError as exc:
        errors = {".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()}
        raise HTTPException(
            status_code=422,
            detail=FieldErrorsResponse(message="Invalid form data", errors=errors).model_dump(),
        ) from exc


def _result_response(result: SubmissionResult) -> SubmissionResult | JSONResponse:
    if result.success:
        return result
    status = 403 if result.error_code in PERMISSION_CODES else 400
    return JSONResponse(status_code=status, content=result.model_dump())


# auth


@router.post("/auth/signup", response_model=SessionResponse)
def sign_up(payload: SignUpRequest, response: Response, db: Session = Depends(get_db)) -> SessionResponse:
    try:
        grant = IdentityService(db).sign_up(payload.email, payload.password, payload.display_name)
    except AuthenticationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _session_response(response, grant)


@router.post("/auth/signin", response_model=SessionResponse)
def sign_in(payload: SignInRequest, response: Response, db: Session = Depends(get_db)) -> SessionResponse:
    try:
        grant = IdentityService(db).sign_in(payload.email, payload.password)
    except AuthenticationError as exc:
        raise http_error(exc) from exc
    return _session_response(response, grant)


@router.post("/auth/signout", response_model=MessageResponse)
def sign_out(
    response: Response,
    token: str | None = Depends(session_token),
    db: Session = Depends(get_db),
) -> MessageResponse:
    if token:
        IdentityService(db).sign_out(token)
    response.delete_cookie(SESSION_COOKIE)
    return MessageResponse(message="Signed out")


@router.get("/auth/me", response_model=Identity)
def me(identity: Identity = Depends(require_identity)) -> Identity:
    return identity


@router.post("/auth/verification", response_model=MessageResponse)
def resend_verification(
    identity: Identity = Depends(require_identity), db: Session = Depends(get_db)
) -> MessageResponse:
    try:
        IdentityService(db).send_verification_email(identity.uid)
    except AuthenticationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MessageResponse(message=f"Verification email sent to {identity.email}")


@router.post("/auth/verify", response_model=Identity)
def verify_email(payload: VerifyEmailRequest, db: Session = Depends(get_db)) -> Identity:
    try:
        return IdentityService(db).verify_email(payload.token)
    except AuthenticationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# submissions


@router.post("/submissions/{category}/draft", response_model=SubmissionResult)
async def save_draft(
    category: Category,
    payload: str = Form("{}"),
    film_file: UploadFile | None = File(None),
    poster_file: UploadFile | None = File(None),
    proof_file: UploadFile | None = File(None),
    identity: Identity = Depends(require_identity),
    lang: Language = Depends(get_language),
    db: Session = Depends(get_db),
):
    uploads = {"film_file": film_file, "poster_file": poster_file, "proof_file": proof_file}
    form = parse_form(category, payload, identity, uploads)
    result = await SubmissionOrchestrator(db, lang=lang).save_draft(form)
    return _result_response(result)


@router.post("/submissions/{category}", response_model=SubmissionResult)
async def submit(
    category: Category,
    payload: str = Form("{}"),
    film_file: UploadFile | None = File(None),
    poster_file: UploadFile | None = File(None),
    proof_file: UploadFile | None = File(None),
    identity: Identity = Depends(require_verified),
    lang: Language = Depends(get_language),
    db: Session = Depends(get_db),
):
    uploads = {"film_file": film_file, "poster_file": poster_file, "proof_file": proof_file}
    form = parse_form(category, payload, identity, uploads)
    field_errors = validate_form_fields(form, lang)
    if field_errors:
        return JSONResponse(
            status_code=422,
            content={
                "detail": FieldErrorsResponse(
                    message=error_message("invalid-form", lang), errors=field_errors
                ).model_dump()
            },
        )
    result = await SubmissionOrchestrator(db, lang=lang).submit(form)
    return _result_response(result)


@router.websocket("/progress/{application_id}/stream")
async def stream_progress(websocket: WebSocket, application_id: str) -> None:
    await websocket.accept()
    event_bus = get_event_bus()
    try:
        async for event in event_bus.subscribe(application_id):
            await websocket.send_json(event)
    except WebSocketDisconnect:
        return


# applications


@router.get("/applications", response_model=list[ApplicationRecord])
def list_applications(
    identity: Identity = Depends(require_identity), db: Session = Depends(get_db)
) -> list[ApplicationRecord]:
    return ApplicationService(db).list_applications(identity.uid)


@router.get("/applications/{application_id}", response_model=ApplicationRecord)
def get_application(
    application_id: str,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    try:
        return ApplicationService(db).get_application(application_id, user_id=identity.uid)
    except (ApplicationNotFoundError, PermissionDeniedError) as exc:
        raise http_error(exc) from exc


@router.patch("/applications/{application_id}", response_model=ApplicationRecord)
def update_application(
    application_id: str,
    changes: dict[str, Any] = Body(...),
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    try:
        return ApplicationService(db).update_draft(application_id, changes, user_id=identity.uid)
    except (LookupError, PermissionDeniedError, ValueError) as exc:
        raise http_error(exc) from exc


@router.post("/applications/{application_id}/submit", response_model=SubmitApplicationResponse)
def submit_application(
    application_id: str,
    identity: Identity = Depends(require_verified),
    db: Session = Depends(get_db),
) -> SubmitApplicationResponse:
    try:
        record = ApplicationService(db).submit_application(application_id, user_id=identity.uid)
    except (LookupError, PermissionDeniedError, ValueError) as exc:
        raise http_error(exc) from exc
    return SubmitApplicationResponse(application=record, warnings=validate_before_submit(record).warnings)


@router.post("/applications/{application_id}/withdraw", response_model=ApplicationRecord)
def withdraw_application(
    application_id: str,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    try:
        return ApplicationService(db).withdraw_application(application_id, user_id=identity.uid)
    except (LookupError, PermissionDeniedError, ValueError) as exc:
        raise http_error(exc) from exc


@router.delete("/applications/{application_id}", response_model=MessageResponse)
async def delete_application(
    application_id: str,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> MessageResponse:
    try:
        await ApplicationService(db).delete_application(application_id, user_id=identity.uid)
    except (LookupError, PermissionDeniedError, ValueError) as exc:
        raise http_error(exc) from exc
    return MessageResponse(message="Application deleted")


@router.put("/applications/{application_id}/files/{slot}", response_model=FileMetadata)
async def replace_file(
    application_id: str,
    slot: FileSlot,
    file: UploadFile = File(...),
    identity: Identity = Depends(require_identity),
    lang: Language = Depends(get_language),
    db: Session = Depends(get_db),
) -> FileMetadata:
    try:
        return await ApplicationService(db).replace_file(
            application_id, slot, to_local_file(file), user_id=identity.uid
        )
    except (LookupError, PermissionDeniedError, ValueError, UploadError) as exc:
        raise http_error(exc, lang) from exc


# stored objects


@files_router.get("/files/{path:path}")
def download_file(path: str) -> FileResponse:
    storage = get_storage()
    try:
        target = storage.resolve(path)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    if not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(target)

