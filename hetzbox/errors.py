"""Structured errors for Hetzner Cloud API calls, provisioning and sessions."""


class HetznerError(Exception):
    """Base class for all hetzbox errors."""


# ── API errors ─────────────────────────────────────────────────────


class ApiError(HetznerError):
    """A failed Hetzner Cloud API call.

    ``kind`` is the error category (``not_found``, ``conflict``, ...),
    ``status`` the HTTP status when a response was received and ``body``
    the decoded response body.
    """

    kind = "http_error"

    def __init__(self, status=None, body=None, message=None):
        self.status = status
        self.body = body
        super().__init__(message or self._default_message())

    def _default_message(self):
        code = ""
        if isinstance(self.body, dict):
            error = self.body.get("error") or {}
            if isinstance(error, dict):
                code = error.get("message") or error.get("code") or ""
        parts = [self.kind]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if code:
            parts.append(str(code))
        return " ".join(parts)


class UnauthorizedError(ApiError):
    kind = "unauthorized"


class NotFoundError(ApiError):
    kind = "not_found"


class ConflictError(ApiError):
    kind = "conflict"


class LockedError(ApiError):
    kind = "locked"


class RateLimitedError(ApiError):
    kind = "rate_limited"


class ServerError(ApiError):
    kind = "server_error"


class HttpError(ApiError):
    kind = "http_error"


class TransportError(ApiError):
    kind = "transport_error"


_STATUS_ERRORS = {
    401: UnauthorizedError,
    404: NotFoundError,
    409: ConflictError,
    423: LockedError,
    429: RateLimitedError,
}


def error_for_status(status, body):
    """Map a non-2xx HTTP status to the matching ApiError instance."""
    if status in _STATUS_ERRORS:
        return _STATUS_ERRORS[status](status, body)
    if status >= 500:
        return ServerError(status, body)
    return HttpError(status, body)


# ── Provisioning / config / keys / sessions ───────────────────────


class ProvisionError(HetznerError):
    """A provisioning stage failed.

    ``code`` names the failing stage (``server_timeout``, ``ssh_timeout``,
    ...). ``context`` carries whatever identifies the resources involved
    (server id, ip, key name) so the caller can clean up.
    """

    def __init__(self, code, **context):
        self.code = code
        self.context = context
        details = ", ".join(f"{k}={v}" for k, v in context.items())
        super().__init__(f"{code} ({details})" if details else code)


class ConfigError(HetznerError):
    """Configuration file or value is invalid."""


class KeypairGenerationError(HetznerError):
    """The crypto backend failed to produce a keypair."""


class SessionError(HetznerError):
    """A remote shell session could not be started or a command failed."""

    def __init__(self, message, exit_status=None, output=""):
        self.exit_status = exit_status
        self.output = output
        super().__init__(message)
