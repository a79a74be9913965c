"""Content provider boundary and model fallback chain.

One logical generation request is issued against an ordered list of model
identifiers. Each model is tried at most once, strictly in order:

    gpt-4o  --transient-->  gpt-4o-mini  --transient-->  gpt-3.5-turbo

Every attempt produces an explicit ``AttemptResult``. Failures are classified
once, at the boundary, into TRANSIENT / CREDENTIAL / FATAL and the chain
branches on that kind:

- TRANSIENT: log and move on to the next model
- CREDENTIAL: abort the whole chain immediately
- FATAL: abort the whole chain immediately

If every model fails transiently the caller gets an ``ExhaustionError``.
"""

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import openai
from langchain_openai import ChatOpenAI

from services.api_keys import APIKeys
from services.errors import (
    CredentialError,
    ExhaustionError,
    FatalError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS = ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"]
DEFAULT_ATTEMPT_TIMEOUT = 45.0
DEFAULT_OPERATION_TIMEOUT = 120.0

TRANSIENT_STATUS_CODES = {404, 408, 429, 503, 529}
CREDENTIAL_STATUS_CODES = {401, 403}

TRANSIENT_TOKENS = (
    "not found",
    "not supported",
    "quota",
    "exhausted",
    "rate limit",
    "rate_limit",
    "429",
    "timeout",
    "timed out",
)
CREDENTIAL_TOKENS = (
    "permission",
    "unauthorized",
    "forbidden",
    "invalid api key",
    "invalid_api_key",
    "api key not valid",
    "incorrect api key",
    "401",
    "403",
)


# =============================================================================
# PROVIDER BOUNDARY
# =============================================================================

class ContentProvider(ABC):
    """A backend that turns prompt messages into text or a structured value."""

    supports_structured_output: bool = False

    @abstractmethod
    def complete(
        self,
        model: str,
        messages: Sequence[Any],
        temperature: float,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Run one model call.

        Returns the message text, or the parsed dict when ``output_schema``
        is honored. Exceptions are classified by the caller.
        """


class LangChainContentProvider(ContentProvider):
    """OpenAI chat models through LangChain.

    The credential is injected at construction. When an output schema is
    given the model is constrained with ``with_structured_output`` and the
    parsed dict is returned directly; otherwise the raw message text is.
    """

    supports_structured_output = True

    def __init__(self, keys: APIKeys, timeout: float = DEFAULT_ATTEMPT_TIMEOUT):
        self._keys = keys
        self.timeout = timeout

    def set_credential(self, keys: APIKeys):
        """Swap in a fresh credential after the backend rejected the old one."""
        self._keys = keys

    def _llm(self, model: str, temperature: float) -> ChatOpenAI:
        if not self._keys.has_openai():
            raise CredentialError("No OpenAI API key available", model=model)
        # Fallback is owned by ContentAdapter, so the client must not retry.
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            api_key=self._keys.openai_key,
            timeout=self.timeout,
            max_retries=0,
        )

    def complete(
        self,
        model: str,
        messages: Sequence[Any],
        temperature: float,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Any:
        llm = self._llm(model, temperature)
        if output_schema is not None:
            structured = llm.with_structured_output(output_schema, method="json_schema")
            return structured.invoke(list(messages))

        response = llm.invoke(list(messages))
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )
        return content


# =============================================================================
# FAILURE CLASSIFICATION
# =============================================================================

class FailureKind(str, Enum):
    TRANSIENT = "transient"
    CREDENTIAL = "credential"
    FATAL = "fatal"


@dataclass(frozen=True)
class ProviderFailure:
    """A classified failure from a single model attempt."""

    kind: FailureKind
    error: BaseException
    model: Optional[str] = None


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one model attempt: a value or a classified failure."""

    model: str
    value: Any = None
    failure: Optional[ProviderFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify_failure(exc: BaseException, model: Optional[str] = None) -> ProviderFailure:
    """Classify an exception raised by a provider call.

    Order: our own taxonomy, typed SDK errors, HTTP status, then message
    tokens as a last resort for untyped errors.
    """
    if isinstance(exc, CredentialError):
        return ProviderFailure(FailureKind.CREDENTIAL, exc, model)
    if isinstance(exc, TransientProviderError):
        return ProviderFailure(FailureKind.TRANSIENT, exc, model)
    if isinstance(exc, FatalError):
        return ProviderFailure(FailureKind.FATAL, exc, model)

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderFailure(FailureKind.CREDENTIAL, exc, model)
    if isinstance(
        exc,
        (
            openai.RateLimitError,
            openai.NotFoundError,
            openai.APITimeoutError,
            openai.APIConnectionError,
            TimeoutError,
        ),
    ):
        return ProviderFailure(FailureKind.TRANSIENT, exc, model)

    status = _status_code(exc)
    if status in CREDENTIAL_STATUS_CODES:
        return ProviderFailure(FailureKind.CREDENTIAL, exc, model)
    if status in TRANSIENT_STATUS_CODES:
        return ProviderFailure(FailureKind.TRANSIENT, exc, model)

    # Credential tokens take precedence over transient ones.
    message = str(exc).lower()
    if any(token in message for token in CREDENTIAL_TOKENS):
        return ProviderFailure(FailureKind.CREDENTIAL, exc, model)
    if any(token in message for token in TRANSIENT_TOKENS):
        return ProviderFailure(FailureKind.TRANSIENT, exc, model)

    return ProviderFailure(FailureKind.FATAL, exc, model)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return len(value) == 0
    return False


# =============================================================================
# FALLBACK CHAIN
# =============================================================================

class ContentAdapter:
    """Issues one logical request across an ordered chain of models."""

    def __init__(
        self,
        provider: ContentProvider,
        models: Optional[Sequence[str]] = None,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        chain: List[str] = []
        for model in models or DEFAULT_MODELS:
            model = str(model).strip()
            if model and model not in chain:
                chain.append(model)
        if not chain:
            raise ValueError("ContentAdapter needs at least one model identifier")

        self.provider = provider
        self.models = chain
        self.attempt_timeout = attempt_timeout
        self.operation_timeout = operation_timeout

    def generate(
        self,
        messages: Sequence[Any],
        output_schema: Optional[Dict[str, Any]] = None,
        temperature: float = 0.7,
    ) -> Any:
        """Run the request through the fallback chain.

        Returns the first non-empty payload (text, or a dict when an output
        schema was honored).

        Raises:
            CredentialError: the backend rejected the credential
            FatalError: an unclassified failure
            ExhaustionError: every model failed transiently, or the
                operation deadline ran out
        """
        schema = output_schema if self.provider.supports_structured_output else None
        started = time.monotonic()
        attempted: List[str] = []
        last_error: Optional[BaseException] = None

        for model in self.models:
            remaining = self.operation_timeout - (time.monotonic() - started)
            if remaining <= 0:
                logger.error(
                    "[PROVIDER] Operation deadline of %.1fs exceeded after %s",
                    self.operation_timeout, attempted,
                )
                raise ExhaustionError(
                    "Operation deadline exceeded before a model succeeded",
                    attempted_models=attempted,
                    last_error=last_error,
                )

            attempted.append(model)
            result = self._attempt(
                model, messages, temperature, schema, min(self.attempt_timeout, remaining)
            )
            if result.ok:
                logger.info(
                    "[PROVIDER] %s succeeded (attempt %d/%d, %.2fs)",
                    model, len(attempted), len(self.models), time.monotonic() - started,
                )
                return result.value

            failure = result.failure
            last_error = failure.error
            if failure.kind is FailureKind.CREDENTIAL:
                logger.error("[PROVIDER] %s rejected the credential; aborting chain", model)
                raise CredentialError(
                    f"Credential rejected by {model}", model=model, cause=failure.error
                ) from failure.error
            if failure.kind is FailureKind.FATAL:
                logger.error("[PROVIDER] %s failed fatally: %s", model, str(failure.error)[:200])
                raise FatalError(
                    f"Unrecoverable failure from {model}: {failure.error}",
                    model=model,
                    cause=failure.error,
                ) from failure.error

            logger.warning(
                "[PROVIDER] %s unavailable (%s); falling back",
                model, str(failure.error)[:100],
            )

        logger.error("[PROVIDER] All %d models exhausted: %s", len(attempted), attempted)
        raise ExhaustionError(
            f"All models exhausted: {', '.join(attempted)}",
            attempted_models=attempted,
            last_error=last_error,
        )

    def _attempt(
        self,
        model: str,
        messages: Sequence[Any],
        temperature: float,
        output_schema: Optional[Dict[str, Any]],
        timeout: float,
    ) -> AttemptResult:
        """Run a single model call under a deadline and classify the outcome."""
        # A fresh single-use worker per attempt: a hung call must not block the next model.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="provider-attempt")
        try:
            future = executor.submit(
                self.provider.complete, model, messages, temperature, output_schema
            )
            value = future.result(timeout=timeout)
        except FuturesTimeoutError:
            error = TransientProviderError(f"{model} timed out after {timeout:.1f}s", model=model)
            return AttemptResult(model, failure=ProviderFailure(FailureKind.TRANSIENT, error, model))
        except Exception as e:
            return AttemptResult(model, failure=classify_failure(e, model))
        finally:
            executor.shutdown(wait=False)

        if _is_empty(value):
            error = TransientProviderError(f"{model} returned an empty payload", model=model)
            return AttemptResult(model, failure=ProviderFailure(FailureKind.TRANSIENT, error, model))
        return AttemptResult(model, value=value)
