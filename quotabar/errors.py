"""Error values reported by fetch strategies and the orchestrator."""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_INSTALLED = "not_installed"
    NOT_LOGGED_IN = "not_logged_in"
    SESSION_EXPIRED = "session_expired"
    UNSUPPORTED_CONFIGURATION = "unsupported_configuration"
    PARSE_FAILED = "parse_failed"
    TIMED_OUT = "timed_out"
    API_ERROR = "api_error"
    NO_CREDENTIALS = "no_credentials"
    NO_COOKIES = "no_cookies"
    SECURE_STORE_FAILURE = "secure_store_failure"
    INVALID_STORED_DATA = "invalid_stored_data"
    NO_STRATEGY_AVAILABLE = "no_strategy_available"


class UsageError(Exception):
    """Base class for every failure the fetch pipeline reports.

    ``kind`` is the stable tag for programmatic handling and ``description``
    the human-readable text shown to the user.
    """

    kind = ErrorKind.API_ERROR
    default_message = "Usage fetch failed."

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        self.detail = detail
        if message is None:
            message = self.default_message
            if detail:
                message = f"{message.rstrip('.')}: {detail}"
        super().__init__(message)

    @property
    def description(self) -> str:
        return str(self)


class NotInstalled(UsageError):
    """The provider's CLI or data directory is not present."""

    kind = ErrorKind.NOT_INSTALLED
    default_message = "Provider is not installed."


class NotLoggedIn(UsageError):
    """Credentials exist but were rejected, or no login was found."""

    kind = ErrorKind.NOT_LOGGED_IN
    default_message = "Not logged in."


class SessionExpired(NotLoggedIn):
    """The browser session was rejected with HTTP 401."""

    kind = ErrorKind.SESSION_EXPIRED
    default_message = "Session expired. Log in again in your browser."


class UnsupportedConfiguration(UsageError):
    """The account is configured in a way this strategy cannot serve."""

    kind = ErrorKind.UNSUPPORTED_CONFIGURATION
    default_message = "Unsupported configuration."


class ParseFailed(UsageError):
    """Upstream data was present but could not be understood."""

    kind = ErrorKind.PARSE_FAILED
    default_message = "Could not parse usage data."


class TimedOut(UsageError):
    kind = ErrorKind.TIMED_OUT
    default_message = "Request timed out."


class APIError(UsageError):
    """Non-success HTTP status or transport failure."""

    kind = ErrorKind.API_ERROR
    default_message = "API error."

    def __init__(self, message: str | None = None, *, detail: str | None = None,
                 status: int | None = None):
        self.status = status
        super().__init__(message, detail=detail)


class NoCredentialsFound(UsageError):
    kind = ErrorKind.NO_CREDENTIALS
    default_message = "No credentials found."


class NoCookies(NoCredentialsFound):
    kind = ErrorKind.NO_COOKIES
    default_message = "No session cookies found in browsers."


class SecureStoreFailure(UsageError):
    """Reading from the platform secure store failed with a status code."""

    kind = ErrorKind.SECURE_STORE_FAILURE
    default_message = "Secure store read failed."

    def __init__(self, code: int | None = None, message: str | None = None):
        self.code = code
        super().__init__(message, detail=None if code is None else f"status {code}")


class InvalidStoredData(UsageError):
    kind = ErrorKind.INVALID_STORED_DATA
    default_message = "Stored credentials are invalid."


class NoStrategyAvailable(UsageError):
    kind = ErrorKind.NO_STRATEGY_AVAILABLE
    default_message = "No fetch strategy is available for this provider."
