"""Error taxonomy shared by the storage, ranking and service layers."""

from typing import List, Optional


class RadarError(Exception):
    """Base class for all eventradar errors."""

    error_code = "internal_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)


class ValidationError(RadarError):
    """Raised when input is malformed or a required field is missing.

    Nothing is persisted for input that fails validation.
    """

    error_code = "validation_error"

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors) or "Invalid input")


class NotFoundError(RadarError):
    """Raised by the transport layer when an id-based lookup misses."""

    error_code = "not_found"


class StorageError(RadarError):
    """Raised when the persistence layer is unavailable or a query fails."""

    error_code = "storage_error"


class RankingUnavailableError(RadarError):
    """Raised inside the ranking client when the engine cannot be used.

    Never escapes RankingClient.rank; it always turns into the unranked fallback.
    """

    error_code = "ranking_unavailable"
