from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Optional


class AIErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    MODEL_NOT_FOUND = "model_not_found"
    PARSING = "parsing"
    STREAM = "stream"
    API = "api"
    CONFIG = "config"
    UNKNOWN = "unknown"


_SIGNIN_URL = re.compile(r'signin_url"\s*:\s*"([^"]+)"')


def _body_message(body: Any) -> str:
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return body.strip()
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if body.get("message"):
            return str(body["message"])
    return ""


class AIError(Exception):
    """A provider failure classified at the adapter boundary. Immutable once built."""

    __slots__ = ("_kind", "_provider", "_model", "_retryable", "_status_code")

    def __init__(
        self,
        kind: AIErrorKind,
        message: str,
        *,
        provider: str,
        model: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        object.__setattr__(self, "_kind", AIErrorKind(kind))
        object.__setattr__(self, "_provider", provider)
        object.__setattr__(self, "_model", model)
        object.__setattr__(self, "_retryable", bool(retryable))
        object.__setattr__(self, "_status_code", status_code)

    def __setattr__(self, name: str, value: Any) -> None:
        # Traceback bookkeeping is the only mutation allowed.
        if name.startswith("__"):
            object.__setattr__(self, name, value)
            return
        raise AttributeError("AIError is immutable")

    @property
    def kind(self) -> AIErrorKind:
        return self._kind

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> Optional[str]:
        return self._model

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def __repr__(self) -> str:
        return (
            f"AIError(kind={self.kind.value!r}, provider={self.provider!r}, model={self.model!r}, "
            f"retryable={self.retryable}, status_code={self.status_code}, message={self.message!r})"
        )

    def describe(self) -> str:
        """One-line message for the user, naming provider, model and retryability."""
        who = self.provider + (f" / {self.model}" if self.model else "")
        hint = "retryable" if self.retryable else "not retryable"
        return f"[{who}] {self.message} ({self.kind.value}, {hint})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "provider": self.provider,
            "model": self.model,
            "retryable": self.retryable,
        }

    @classmethod
    def from_status(
        cls,
        status: int,
        provider: str,
        model: Optional[str] = None,
        body: Any = None,
        reason: str = "",
    ) -> "AIError":
        message = _body_message(body) or reason or "Unknown error"
        lower = message.lower()

        if status in (401, 403):
            kind, retryable = AIErrorKind.AUTH, False
        elif status == 429:
            kind, retryable = AIErrorKind.RATE_LIMIT, True
        elif status == 400:
            if "context" in lower or "token" in lower:
                kind = AIErrorKind.CONTEXT_LENGTH_EXCEEDED
            elif "model" in lower:
                kind = AIErrorKind.MODEL_NOT_FOUND
            else:
                kind = AIErrorKind.INVALID_REQUEST
            retryable = False
        elif status == 404:
            if "endpoint" in lower or "not supported" in lower:
                kind = AIErrorKind.CONFIG
            else:
                kind = AIErrorKind.MODEL_NOT_FOUND
            retryable = False
        else:
            kind, retryable = AIErrorKind.API, status >= 500

        return cls(
            kind,
            f"{provider} API error ({status}): {message}",
            provider=provider,
            model=model,
            retryable=retryable,
            status_code=status,
        )

    @classmethod
    def from_network_error(cls, error: BaseException | str, provider: str, model: Optional[str] = None) -> "AIError":
        message = str(error) or type(error).__name__
        lower = message.lower()
        is_timeout = "timeout" in lower or "timed out" in lower or "aborted" in lower
        if not isinstance(error, str):
            is_timeout = is_timeout or "Timeout" in type(error).__name__
        refused = "connection refused" in lower or "connecterror" in lower or "errno 111" in lower
        if not isinstance(error, str):
            refused = refused or type(error).__name__ == "ConnectError"

        if provider.lower() == "ollama":
            if "unauthorized" in lower:
                m = _SIGNIN_URL.search(message)
                msg = "Ollama requires authentication. Please run: ollama signin"
                if m:
                    msg += f"\nOr visit: {m.group(1)}"
                return cls(AIErrorKind.AUTH, msg, provider=provider, model=model, retryable=False)
            if refused:
                return cls(
                    AIErrorKind.CONFIG,
                    'Ollama is not running. Please start Ollama with "ollama serve" or ensure it is running in the background.',
                    provider=provider,
                    model=model,
                    retryable=False,
                )

        return cls(
            AIErrorKind.TIMEOUT if is_timeout else AIErrorKind.NETWORK,
            f"{provider} network error: {message}",
            provider=provider,
            model=model,
            retryable=True,
        )

    @classmethod
    def missing_api_key(cls, provider: str, model: Optional[str] = None) -> "AIError":
        return cls(
            AIErrorKind.CONFIG,
            f"{provider} API key not found. Set api_key in the provider config.",
            provider=provider,
            model=model,
        )

    @classmethod
    def missing_base_url(cls, provider: str, model: Optional[str] = None) -> "AIError":
        return cls(
            AIErrorKind.CONFIG,
            f"{provider} base URL not configured. Set base_url in the provider config.",
            provider=provider,
            model=model,
        )

    @classmethod
    def stream_error(cls, provider: str, message: str, model: Optional[str] = None) -> "AIError":
        return cls(AIErrorKind.STREAM, f"{provider} streaming error: {message}", provider=provider, model=model)

    @classmethod
    def parsing_error(cls, provider: str, message: str, model: Optional[str] = None) -> "AIError":
        return cls(AIErrorKind.PARSING, f"{provider} response could not be parsed: {message}", provider=provider, model=model)

    @classmethod
    def empty_response(cls, provider: str, model: Optional[str] = None) -> "AIError":
        return cls(
            AIErrorKind.API,
            f"{provider} returned an empty response",
            provider=provider,
            model=model,
            retryable=True,
        )
