from __future__ import annotations

from typing import Optional

# The embedded page reloads itself when it sees this exact message
SESSION_EXPIRED_MESSAGE = "Session expired. Please refresh the page."


class RankSyncError(Exception):
    """Base for failures that end a request with a single error message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationRequired(RankSyncError):
    status_code = 401


class CollectionNotFound(RankSyncError):
    status_code = 404


class InvalidSortOrder(RankSyncError):
    status_code = 400


class UnexpectedSyncError(RankSyncError):
    status_code = 500


class ShopifyApiError(Exception):
    """Raised by the Admin API client on HTTP or GraphQL level failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)
