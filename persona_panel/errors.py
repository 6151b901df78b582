class PanelError(Exception):
    # Base class for persona-panel failures.
    pass


class JobValidationError(PanelError, ValueError):
    # Raised at job start for malformed input (no personas, no questions, duplicate ids).
    pass


class ModelCallError(PanelError):
    # Raised when the model endpoint fails or returns an unusable payload.
    pass


class CredentialError(ModelCallError):
    # Raised when the model endpoint rejects or lacks an API key.
    pass


CREDENTIAL_ERROR_MARKERS = (
    "api key",
    "api_key",
    "apikey",
    "authentication",
    "unauthorized",
    "401",
    "invalid x-api-key",
)


def is_credential_error(exc: BaseException) -> bool:
    """True if the failure points at a missing or rejected credential."""
    if isinstance(exc, CredentialError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in CREDENTIAL_ERROR_MARKERS)
