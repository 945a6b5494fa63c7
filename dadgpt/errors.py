"""Exception hierarchy and provider error classification."""

from __future__ import annotations

from enum import StrEnum


class DadGPTError(Exception):
    """Base class for all DadGPT errors."""

    code = "DADGPT_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class ConfigError(DadGPTError):
    code = "CONFIG_ERROR"


class StorageError(DadGPTError):
    code = "STORAGE_ERROR"


class SessionNotFoundError(DadGPTError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ToolError(DadGPTError):
    code = "TOOL_ERROR"


class UnknownToolError(ToolError):
    code = "UNKNOWN_TOOL"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.tool_name = name


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderErrorKind(StrEnum):
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    SERVICE_ERROR = "SERVICE_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


_REMEDIATIONS: dict[ProviderErrorKind, str] = {
    ProviderErrorKind.NETWORK_ERROR: "Check your internet connection and try again.",
    ProviderErrorKind.AUTH_ERROR: (
        "Your API key is missing or invalid. Set ANTHROPIC_API_KEY or OPENAI_API_KEY."
    ),
    ProviderErrorKind.RATE_LIMIT: "Rate limit reached. Wait a moment before sending another message.",
    ProviderErrorKind.SERVICE_ERROR: "The AI service returned an error. Try again shortly.",
    ProviderErrorKind.TIMEOUT_ERROR: "The request timed out. Try again, or ask a shorter question.",
}

# Checked in order; first match wins
_CLASSIFIERS: list[tuple[ProviderErrorKind, tuple[str, ...]]] = [
    (ProviderErrorKind.TIMEOUT_ERROR, ("timeout", "timed out", "etimedout")),
    (ProviderErrorKind.AUTH_ERROR, ("401", "403", "unauthorized", "authentication", "api key", "forbidden")),
    (ProviderErrorKind.RATE_LIMIT, ("429", "rate limit", "rate_limit", "too many requests")),
    (
        ProviderErrorKind.NETWORK_ERROR,
        ("econnrefused", "enotfound", "connection", "network", "dns", "unreachable"),
    ),
]


class ProviderError(DadGPTError):
    code = "PROVIDER_ERROR"

    def __init__(self, message: str, kind: ProviderErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or classify_provider_error(message)

    @property
    def remediation(self) -> str:
        return remediation_for(self.kind)


def classify_provider_error(error: BaseException | str) -> ProviderErrorKind:
    """Classify a provider failure by inspecting its message.

    Anything unrecognised is treated as a service-side error.
    """
    message = str(error).lower()
    for kind, needles in _CLASSIFIERS:
        if any(needle in message for needle in needles):
            return kind
    return ProviderErrorKind.SERVICE_ERROR


def remediation_for(kind: ProviderErrorKind) -> str:
    return _REMEDIATIONS[kind]
