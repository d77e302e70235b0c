"""Page-load failure classification.

Order of preference once a main document request is known:
interstitial -> network -> non-HTML -> the error raised by navigation itself.
"""

from __future__ import annotations

from .errors import LighthouseError
from .network_records import (
    HTML_MIME_TYPE,
    XHTML_MIME_TYPE,
    NetworkRecord,
    find_main_document,
    resolve_redirects,
)


def get_network_error(main_record: NetworkRecord | None) -> LighthouseError | None:
    if main_record is None:
        return LighthouseError("NO_DOCUMENT_REQUEST")
    if main_record.failed:
        description = main_record.localized_fail_description
        if (
            description in {"net::ERR_NAME_NOT_RESOLVED", "net::ERR_NAME_RESOLUTION_FAILED"}
            or description.startswith("net::ERR_DNS_")
        ):
            return LighthouseError("DNS_FAILURE")
        return LighthouseError("FAILED_DOCUMENT_REQUEST", {"errorDetails": description})
    if main_record.has_error_status_code:
        return LighthouseError("ERRORED_DOCUMENT_REQUEST", {"statusCode": str(main_record.status_code)})
    return None


def get_interstitial_error(
    main_record: NetworkRecord | None, network_records: list[NetworkRecord]
) -> LighthouseError | None:
    if main_record is None:
        return None
    if not any(record.document_url.startswith("chrome-error://") for record in network_records):
        return None
    description = main_record.localized_fail_description
    if description.startswith("net::ERR_CERT"):
        return LighthouseError("INSECURE_DOCUMENT_REQUEST", {"securityMessages": description})
    return LighthouseError("CHROME_INTERSTITIAL_ERROR")


def get_non_html_error(final_record: NetworkRecord | None) -> LighthouseError | None:
    # A failed request never received a MIME type.
    if final_record is None or final_record.failed:
        return None
    if final_record.mime_type in {HTML_MIME_TYPE, XHTML_MIME_TYPE}:
        return None
    return LighthouseError("NOT_HTML", {"mimeType": final_record.mime_type})


def get_page_load_error(
    navigation_error: LighthouseError | None,
    *,
    url: str,
    load_failure_mode: str,
    network_records: list[NetworkRecord],
    skip_network_errors: bool = False,
) -> LighthouseError | None:
    """Pick the most specific PageLoadError for one pass or navigation, if any.

    `skip_network_errors` is set when the browser is emulating offline, where
    a failed document request is expected.
    """
    if load_failure_mode == "ignore":
        return None

    main_record = find_main_document(network_records, url)
    final_record = resolve_redirects(main_record) if main_record is not None else None

    interstitial_error = get_interstitial_error(main_record, network_records)
    if interstitial_error is not None:
        return interstitial_error

    network_error = None if skip_network_errors else get_network_error(main_record)
    if network_error is not None:
        return network_error

    non_html_error = get_non_html_error(final_record)
    if non_html_error is not None:
        return non_html_error

    return navigation_error


__all__ = [
    "get_interstitial_error",
    "get_network_error",
    "get_non_html_error",
    "get_page_load_error",
]
