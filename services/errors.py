"""Error taxonomy for content-provider calls.

Transient failures are absorbed by the model fallback chain. Credential and
fatal failures abort the chain. Exhaustion means every model in the chain
failed transiently (or the operation ran out of time).
"""

from typing import List, Optional


class ProviderError(Exception):
    """Base class for every failure raised at the provider boundary."""

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.model = model
        self.cause = cause


class TransientProviderError(ProviderError):
    """Capacity, availability, unsupported model or rate limiting."""


class CredentialError(ProviderError):
    """The backend rejected the credential (unauthorized, forbidden, invalid key)."""


class FatalError(ProviderError):
    """Unclassified failure. Not worth trying another model."""


class MalformedOutputError(ProviderError):
    """The payload could not be decoded or violated the expected shape."""


class ExhaustionError(ProviderError):
    """Every model in the fallback chain failed with a transient error."""

    def __init__(
        self,
        message: str,
        attempted_models: Optional[List[str]] = None,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=last_error)
        self.attempted_models = list(attempted_models or [])
        self.last_error = last_error
