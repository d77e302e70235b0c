"""Network records reconstructed from a devtools log (recorded `Network.*` events)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

HTML_MIME_TYPE = "text/html"
XHTML_MIME_TYPE = "application/xhtml+xml"


@dataclass
class NetworkRecord:
    request_id: str
    url: str
    document_url: str = ""
    frame_id: str = ""
    resource_type: str = ""
    method: str = "GET"
    mime_type: str = ""
    status_code: int = -1
    protocol: str = ""
    failed: bool = False
    canceled: bool = False
    finished: bool = False
    localized_fail_description: str = ""
    network_request_time: float = 0.0
    network_end_time: float = -1.0
    transfer_size: int = 0
    request_headers: dict[str, str] = field(default_factory=dict)
    response_headers: list[dict[str, str]] = field(default_factory=list)
    redirect_source: NetworkRecord | None = field(default=None, repr=False)
    redirect_destination: NetworkRecord | None = field(default=None, repr=False)

    @property
    def has_error_status_code(self) -> bool:
        return self.status_code >= 400

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for entry in self.response_headers:
            if str(entry.get("name", "")).lower() == wanted:
                return entry.get("value")
        return None


def normalize_url(url: str) -> str:
    """Drop the fragment; an empty path on a host URL becomes "/"."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    path = parts.path or ("/" if parts.netloc else "")
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def _headers_list(raw: Any) -> list[dict[str, str]]:
    if not isinstance(raw, dict):
        return []
    return [{"name": str(name), "value": str(value)} for name, value in raw.items()]


def _apply_response(record: NetworkRecord, response: dict[str, Any], resource_type: str | None) -> None:
    record.status_code = int(response.get("status", record.status_code))
    record.mime_type = str(response.get("mimeType") or record.mime_type)
    record.protocol = str(response.get("protocol") or record.protocol)
    record.response_headers = _headers_list(response.get("headers"))
    if response.get("url"):
        record.url = str(response["url"])
    if resource_type:
        record.resource_type = resource_type


def network_records_from_devtools_log(devtools_log: list[dict[str, Any]] | None) -> list[NetworkRecord]:
    """Rebuild request records, including redirect chains, from protocol messages."""
    records: list[NetworkRecord] = []
    by_id: dict[str, NetworkRecord] = {}

    for message in devtools_log or []:
        method = message.get("method")
        params = message.get("params") or {}
        if not isinstance(method, str) or not method.startswith("Network."):
            continue
        request_id = str(params.get("requestId", ""))

        if method == "Network.requestWillBeSent":
            request = params.get("request") or {}
            previous = by_id.get(request_id)
            redirect_response = params.get("redirectResponse")
            if previous is not None and isinstance(redirect_response, dict):
                # Chrome reuses the request id across redirects; the previous hop gets a suffix.
                _apply_response(previous, redirect_response, None)
                previous.finished = True
                previous.request_id = f"{request_id}:redirect"
            record = NetworkRecord(
                request_id=request_id,
                url=str(request.get("url", "")),
                document_url=str(params.get("documentURL", "")),
                frame_id=str(params.get("frameId", "")),
                resource_type=str(params.get("type", "")),
                method=str(request.get("method", "GET")),
                network_request_time=float(params.get("timestamp", 0.0)),
                request_headers={str(k): str(v) for k, v in (request.get("headers") or {}).items()},
            )
            if previous is not None and isinstance(redirect_response, dict):
                previous.redirect_destination = record
                record.redirect_source = previous
            by_id[request_id] = record
            records.append(record)
            continue

        record = by_id.get(request_id)
        if record is None:
            continue
        if method == "Network.responseReceived":
            _apply_response(record, params.get("response") or {}, params.get("type"))
        elif method == "Network.loadingFinished":
            record.finished = True
            record.network_end_time = float(params.get("timestamp", record.network_end_time))
            record.transfer_size = int(params.get("encodedDataLength", record.transfer_size))
        elif method == "Network.loadingFailed":
            record.failed = True
            record.finished = True
            record.canceled = bool(params.get("canceled", False))
            record.localized_fail_description = str(params.get("errorText", ""))
            record.network_end_time = float(params.get("timestamp", record.network_end_time))
            if params.get("type"):
                record.resource_type = str(params["type"])

    return records


def find_resource_for_url(records: list[NetworkRecord], url: str) -> NetworkRecord | None:
    """First record whose URL matches `url`, ignoring the fragment."""
    wanted = normalize_url(url)
    for record in records:
        if normalize_url(record.url) == wanted:
            return record
    return None


def find_main_document(records: list[NetworkRecord], url: str | None = None) -> NetworkRecord | None:
    """The record for `url`, or the earliest Document when no url is given."""
    if url:
        return find_resource_for_url(records, url)
    documents = [record for record in records if record.resource_type == "Document"]
    if not documents:
        return None
    return min(documents, key=lambda record: record.network_request_time)


def resolve_redirects(record: NetworkRecord) -> NetworkRecord:
    while record.redirect_destination is not None:
        record = record.redirect_destination
    return record


def network_user_agent(devtools_log: list[dict[str, Any]] | None) -> str:
    """User-Agent of the first request sent; empty when none carried one."""
    for message in devtools_log or []:
        if message.get("method") != "Network.requestWillBeSent":
            continue
        headers = ((message.get("params") or {}).get("request") or {}).get("headers") or {}
        for name, value in headers.items():
            if str(name).lower() == "user-agent":
                return str(value)
    return ""


__all__ = [
    "HTML_MIME_TYPE",
    "XHTML_MIME_TYPE",
    "NetworkRecord",
    "find_main_document",
    "find_resource_for_url",
    "network_records_from_devtools_log",
    "network_user_agent",
    "normalize_url",
    "resolve_redirects",
]
