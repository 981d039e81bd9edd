from typing import Optional


class WondereloError(Exception):
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, reason: Optional[str] = None):
        self.message = message or self.default_message
        self.status = status
        self.reason = reason
        super().__init__(self.message)


class NetworkError(WondereloError):
    default_message = "Could not reach the server. Check your connection."


class AuthError(WondereloError):
    default_message = "Your link is no longer valid."


class NotFoundError(WondereloError):
    default_message = "Not found"


class NotReadyError(NotFoundError):
    """Matching has not run for the round yet."""
    default_message = "Matching has not run yet"


class NoMatchError(NotFoundError):
    default_message = "You could not be matched with other participants"


class ValidationError(WondereloError):
    default_message = "The request was rejected"


class ServerError(WondereloError):
    default_message = "The server had a problem. Please try again."


class PollTimeoutError(WondereloError):
    default_message = "Matching is taking longer than expected. Please go back and try again."


def error_for_response(status: int, message: Optional[str], reason: Optional[str]) -> WondereloError:
    if status in (401, 403):
        return AuthError(message, status, reason)
    if status == 404:
        if reason == "not-ready":
            return NotReadyError(message, status, reason)
        if reason == "no-match":
            return NoMatchError(message, status, reason)
        return NotFoundError(message, status, reason)
    if 400 <= status < 500:
        return ValidationError(message, status, reason)
    return ServerError(message, status, reason)
