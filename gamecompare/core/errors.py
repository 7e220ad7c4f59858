# ===== TYPES & INTERFACES =====
from typing import Optional


class GameCompareError(Exception):
    """Base class for every error raised by the gamecompare core."""


class TransportError(GameCompareError):
    """A storefront request failed: network exception or non-2xx response."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        self.message = message
        if status is not None:
            super().__init__(f"HTTP {status} from {url}: {message}")
        else:
            super().__init__(f"Request to {url} failed: {message}")


# Name used by callers of the fetch-with-retry client.
NetworkError = TransportError


class NotFoundError(GameCompareError):
    """A requested game, offer or comparison does not exist."""


class ValidationError(GameCompareError):
    """Caller input was rejected before any I/O took place."""


class PartialSyncError(GameCompareError):
    """A sync run finished with a small number of per-record failures."""

    def __init__(self, platform: str, errors):
        self.platform = platform
        self.errors = list(errors)
        super().__init__(f"{platform} sync finished with {len(self.errors)} record error(s)")


class FatalSyncError(GameCompareError):
    """A sync run failed outright or exceeded the per-record error threshold."""

    def __init__(self, platform: str, errors):
        self.platform = platform
        self.errors = list(errors)
        super().__init__(f"{platform} sync failed with {len(self.errors)} error(s)")
