"""Domain-level exceptions for the review API."""


class ReviewApiError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500


class BadRequestError(ReviewApiError, ValueError):
    """Raised for client-side invalid requests at the domain layer."""

    status_code = 400


class InvalidInputError(BadRequestError):
    """Raised when the request body is malformed or misses a required field."""


class InvalidProviderError(BadRequestError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Invalid provider: {provider_id}")


class MissingCredentialError(BadRequestError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"No API key provided for {provider_id}. Please add it in Settings.")


class InsufficientCreditsError(ReviewApiError):
    status_code = 402

    def __init__(self) -> None:
        super().__init__("Insufficient credits")


class UpstreamError(ReviewApiError):
    """Raised when an LLM provider or GitHub returns a failure."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        details: str | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        self.details = details
        super().__init__(message)
