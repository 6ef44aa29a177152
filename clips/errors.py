from __future__ import annotations


class ClipError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(ClipError):
    status_code = 404


class UnprocessableEntity(ClipError):
    """Declared integrity metadata disagrees with the stored object."""

    status_code = 422


class UpstreamFailure(ClipError):
    status_code = 502


class Conflict(ClipError):
    status_code = 409


class InvalidRequest(ClipError):
    status_code = 400
