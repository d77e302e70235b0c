"""Error taxonomy for the gather engine.

- GatherError: base class, structured via `to_dict()`
- ProtocolError: transport / protocol command failures
- LighthouseError: classified page-load failures with a stable code
- GathererNoArtifactError, MultipleTabsError, ConfigError: engine failures
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class GatherError(Exception):
    """Base class for every error raised by the gather engine."""

    def to_dict(self) -> dict[str, Any]:
        return {"error": True, "type": type(self).__name__, "message": str(self)}


class ProtocolError(GatherError):
    pass


class ConfigError(GatherError):
    pass


class GathererNoArtifactError(GatherError):
    def __init__(self, gatherer_name: str) -> None:
        super().__init__(f"{gatherer_name} failed to provide an artifact.")
        self.gatherer_name = gatherer_name


class MultipleTabsError(GatherError):
    def __init__(self) -> None:
        super().__init__("You probably have multiple tabs open to the same origin.")


@dataclass(frozen=True)
class ErrorKind:
    code: str
    message: str
    lhr_runtime_error: bool = True


_PAGE_LOAD_FAILED = (
    "The auditor was unable to reliably load the page you requested. Make sure you are testing "
    "the correct URL and that the server is properly responding to all requests."
)

ERRORS: dict[str, ErrorKind] = {
    kind.code: kind
    for kind in (
        ErrorKind(
            "NO_FCP",
            "The page did not paint any content. Please ensure you keep the browser window in the "
            "foreground during the load and try again.",
        ),
        ErrorKind(
            "PAGE_HUNG",
            "The auditor was unable to reliably load the URL you requested because the page stopped responding.",
        ),
        ErrorKind("NO_DOCUMENT_REQUEST", _PAGE_LOAD_FAILED),
        ErrorKind("FAILED_DOCUMENT_REQUEST", _PAGE_LOAD_FAILED + " (Details: {errorDetails})"),
        ErrorKind("ERRORED_DOCUMENT_REQUEST", _PAGE_LOAD_FAILED + " (Status code: {statusCode})"),
        ErrorKind("DNS_FAILURE", "DNS servers could not resolve the provided domain."),
        ErrorKind(
            "CHROME_INTERSTITIAL_ERROR",
            "Chrome prevented page load with an interstitial. Make sure you are testing the correct "
            "URL and that the server is properly responding to all requests.",
        ),
        ErrorKind(
            "INSECURE_DOCUMENT_REQUEST",
            "The URL you have provided does not have a valid security certificate. {securityMessages}",
        ),
        ErrorKind("NOT_HTML", "The page provided is not HTML (served as MIME type {mimeType})."),
        ErrorKind("INVALID_URL", "The URL you have provided appears to be invalid.", lhr_runtime_error=False),
        ErrorKind("PROTOCOL_TIMEOUT", "Waiting for DevTools protocol response has exceeded the allotted time. (Method: {protocolMethod})"),
    )
}

# Errors raised by navigation itself that are recoverable at the pass boundary.
NAVIGATION_ERROR_CODES = frozenset({"NO_FCP", "PAGE_HUNG"})


class LighthouseError(GatherError):
    """A classified failure carrying a stable `code`.

    `friendly_message` is a structured message suitable for run warnings:
    `{"i18nId": ..., "formattedDefault": ..., "values": {...}}`.
    """

    def __init__(self, code: str, data: dict[str, Any] | None = None) -> None:
        kind = ERRORS.get(code)
        if kind is None:
            raise ValueError(f"Unknown error code: {code}")
        self.code = code
        self.data = dict(data or {})
        self.lhr_runtime_error = kind.lhr_runtime_error
        try:
            formatted = kind.message.format(**self.data)
        except (KeyError, IndexError):
            formatted = kind.message
        self.friendly_message: dict[str, Any] = {
            "i18nId": f"errors.{code}",
            "formattedDefault": formatted,
            **({"values": dict(self.data)} if self.data else {}),
        }
        super().__init__(code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "type": type(self).__name__,
            "code": self.code,
            "message": self.friendly_message["formattedDefault"],
            "data": self.data,
        }


def is_navigation_error(err: BaseException) -> bool:
    return isinstance(err, LighthouseError) and err.code in NAVIGATION_ERROR_CODES


__all__ = [
    "ERRORS",
    "NAVIGATION_ERROR_CODES",
    "ConfigError",
    "ErrorKind",
    "GatherError",
    "GathererNoArtifactError",
    "LighthouseError",
    "MultipleTabsError",
    "ProtocolError",
    "is_navigation_error",
]
