"""Error hierarchy for gateway and portal failures.

Errors are split into transient failures (a retry may help) and permanent
failures (a retry will not help). Nothing inside this package retries; callers
that want retries can wrap calls with ``secondclass.retry.retrying``, which
keys off this classification:

    result = await retrying(automator.sign_all_eligible, attempts=3)
"""


class SecondClassError(Exception):
    """Base exception for all gateway and portal errors."""

    pass


class TransientError(SecondClassError):
    """Temporary failure that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Transport failure: connection refused, DNS, timeout, reset.

    Raised from the underlying ``httpx.TransportError``.
    """

    pass


class PermanentError(SecondClassError):
    """Failure that won't succeed on retry."""

    pass


class AuthError(PermanentError):
    """Bad credentials, refused CAPTCHA, gateway refusal or rejected token.

    Requires a fresh login, cannot be fixed by retry.
    """

    pass


class ProtocolError(PermanentError):
    """The gateway answered with something other than the expected contract.

    Typically the generic "Server internal error" page instead of JSON.
    """

    pass


class ApplicationError(PermanentError):
    """JSON response whose success marker is absent.

    Carries the portal's own message text.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ApplicationError):
    """An expected record (e.g. a sign record) is absent."""

    pass
