"""Exception hierarchy for the vault.

Every error carries the HTTP status and the message that is safe to show
to a caller. Server-side detail goes to the log, never into `public_message`.
"""


class VaultError(Exception):
    """Base class for all vault errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class ConfigurationError(VaultError):
    """Bad or missing configuration. Fatal at startup."""


# ── Input validation ─────────────────────────────────────────────

class NoFiles(VaultError):
    status_code = 400
    public_message = "No files uploaded"


class UnsupportedMedia(VaultError):
    status_code = 400
    public_message = "Only image and video uploads are accepted"


class InvalidToken(VaultError):
    status_code = 400
    public_message = "Invalid album identifier"


class UploadTooLarge(VaultError):
    status_code = 413
    public_message = "File too large"


# ── Processing ───────────────────────────────────────────────────

class TranscodeFailed(VaultError):
    status_code = 422
    public_message = "Video conversion failed"


class EncryptionFailed(VaultError):
    pass


class StorageFailed(VaultError):
    pass


class IntegrityError(VaultError):
    """Ciphertext or its metadata failed authentication."""


# ── Not found ────────────────────────────────────────────────────

class NotFound(VaultError):
    status_code = 404
    public_message = "Not found"


class PathContainmentError(NotFound):
    """A stored path resolved outside the storage root."""


class ObjectMissing(NotFound):
    """The catalog knows the object but the ciphertext file is gone."""
