from __future__ import annotations


class MatchingError(Exception):
    """Base class for failures surfaced by the matching core."""

    code = "MATCHING_ERROR"
    status_code = 500
    caller_fault = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidLocation(MatchingError):
    code = "INVALID_LOCATION"
    status_code = 422
    caller_fault = True


class LocationRequired(MatchingError):
    code = "LOCATION_REQUIRED"
    status_code = 400
    caller_fault = True


class InvalidRating(MatchingError):
    code = "INVALID_RATING"
    status_code = 422
    caller_fault = True


class InvalidCategory(MatchingError):
    code = "INVALID_CATEGORY"
    status_code = 422
    caller_fault = True


class ProviderNotFound(MatchingError):
    code = "PROVIDER_NOT_FOUND"
    status_code = 404
    caller_fault = True


class RequesterNotFound(MatchingError):
    code = "REQUESTER_NOT_FOUND"
    status_code = 404
    caller_fault = True


class StoreUnavailable(MatchingError):
    """Raised when the backing store could not complete an I/O operation."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
