"""Error taxonomy for the asset pipeline.

Every error carries the HTTP status it maps to; the API layer renders them as
``{"success": false, "message": ...}``.
"""


class AssetError(Exception):
    """Base class for asset pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AssetError):
    """Malformed or missing input, type mismatch, missing client."""

    status_code = 400


class NotFoundError(AssetError):
    """Asset (or client, on the write path) does not exist."""

    status_code = 404


class PermissionDeniedError(AssetError):
    """Caller is not allowed to mutate the asset."""

    status_code = 403


class ReferentialIntegrityError(AssetError):
    """Owner/client reference could not be satisfied, even after the fallback."""

    status_code = 409


class ProcessingError(AssetError):
    """Derivative generation failed. Absorbed by the generator, never surfaced."""

    status_code = 500


class PersistenceError(AssetError):
    """Record store failure after bytes were written."""

    status_code = 500
