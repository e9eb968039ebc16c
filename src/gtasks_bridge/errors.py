"""Error taxonomy shared by the provider clients, the store and the engine."""


class BridgeError(Exception):
    """Base class for all bridge errors."""

    pass


class ProviderError(BridgeError):
    """An error reported by (or while talking to) a task provider."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.status = status


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, rate limit or 5xx. Transient."""

    pass


class ProviderRejected(ProviderError):
    """The provider refused the request (4xx validation error)."""

    pass


class NotFound(ProviderError):
    """The task no longer exists on the provider."""

    pass


class CredentialExpired(ProviderError):
    """The provider rejected our credentials and they could not be renewed."""

    pass


class StorePersistenceFailure(BridgeError):
    """The correlation store could not be written."""

    pass


class InvalidTransition(BridgeError):
    """A correlation record was asked to make an illegal state change."""

    pass


def classify_http_status(status: int | None) -> type[ProviderError]:
    """Map an HTTP status code to the matching provider error class.

    Args:
        status: HTTP status code, or None when no response was received

    Returns:
        ProviderError subclass to raise
    """
    if status is None:
        return ProviderUnavailable
    if status == 401:
        return CredentialExpired
    if status in (404, 410):
        return NotFound
    if status in (408, 429) or status >= 500:
        return ProviderUnavailable
    if 400 <= status < 500:
        return ProviderRejected
    return ProviderUnavailable
