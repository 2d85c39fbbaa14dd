"""Failure taxonomy for the relay.

Every error that can reach a client derives from ``RelayError`` and carries
the HTTP status it maps to plus a message that is safe to return verbatim.
Messages never include credential values.
"""


class RelayError(Exception):
    status_code = 500
    message = "Relay error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InputError(RelayError):
    status_code = 400
    message = "Invalid request"


class AuthFailure(RelayError):
    """Credential issuance failed (bad status, bad body or missing token)."""

    status_code = 502

    def __init__(self, reason: str, status: int | None = None):
        self.reason = reason
        self.upstream_status = status
        detail = f"status {status}" if status is not None else reason
        super().__init__(f"Upstream authentication failed: {detail}")


class ResolveFailure(RelayError):
    """Indirection URL could not be exchanged for a CDN URL."""

    status_code = 502

    def __init__(self, reason: str, status: int | None = None):
        self.reason = reason
        self.upstream_status = status
        detail = f"status {status}" if status is not None else reason
        super().__init__(f"CDN resolve failed: {detail}")


class FetchTimeout(RelayError):
    status_code = 504
    message = "Request timeout"


class FetchError(RelayError):
    """Connection-level failure talking to an upstream server."""

    status_code = 502
    message = "Upstream connection failed"


class UpstreamError(RelayError):
    """Upstream answered with a status other than 200/206."""

    def __init__(self, status: int):
        self.upstream_status = status
        # Leftover 1xx/3xx statuses cannot carry a JSON body.
        self.status_code = status if status >= 400 else 502
        super().__init__(f"Stream error: {status}")
