from __future__ import annotations

from fastapi import HTTPException, status


class UploadValidationError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ConcurrencyConflict(HTTPException):
    def __init__(self, detail: str = "Line was modified by another request; reload and retry"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransition(HTTPException):
    def __init__(self, *, current: str, target: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move import from {current} to {target}",
        )
        self.current = current
        self.target = target


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
