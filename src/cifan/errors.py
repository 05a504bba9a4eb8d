from __future__ import annotations


class SubmissionError(Exception):
    """Failure of one submission run, tagged with the stage it happened in."""

    def __init__(self, message: str, code: str, stage: str, detail_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.stage = stage
        self.detail_code = detail_code


class UploadError(Exception):
    def __init__(self, message: str, code: str, file_name: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.file_name = file_name


class StorageError(Exception):
    pass


class StoragePermissionError(StorageError):
    pass


class ApplicationNotFoundError(LookupError):
    pass


class ApplicationStateError(ValueError):
    """Operation attempted outside the legal status transitions."""


class ApplicationValidationError(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__(f"Validation failed: {', '.join(errors)}")
        self.errors = errors


class PermissionDeniedError(Exception):
    pass


class AuthenticationError(Exception):
    pass
