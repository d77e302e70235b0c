"""<link> elements from the DOM plus those declared in `Link` response headers."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

from ..network_records import find_main_document
from .base import GathererMeta, LoadData, PassContext, PhaseGatherer

LINK_ELEMENTS_EXPRESSION = """
(() => {
  const links = [...document.querySelectorAll('link')];
  return links.map(link => ({
    rel: link.rel || '',
    href: link.href || null,
    hrefRaw: link.getAttribute('href') || '',
    hreflang: link.hreflang || '',
    as: link.as || '',
    crossOrigin: link.crossOrigin || null,
    source: link.closest('head') ? 'head' : 'body',
    node: null,
  }));
})()
"""

_HEADER_PARAM = re.compile(r';\s*([^\s=;,]+)\s*(?:=\s*(?:"([^"]*)"|([^;,]*)))?')


def _split_link_header(value: str) -> list[str]:
    """Split on commas that are outside `<...>` and quoted strings."""
    parts: list[str] = []
    current: list[str] = []
    in_uri = in_quote = False
    for char in value:
        if char == "<" and not in_quote:
            in_uri = True
        elif char == ">" and not in_quote:
            in_uri = False
        elif char == '"' and not in_uri:
            in_quote = not in_quote
        elif char == "," and not in_uri and not in_quote:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return [part.strip() for part in parts if part.strip()]


def parse_link_header(value: str) -> list[dict[str, str]]:
    """Parse one `Link` header value into `{"uri": ..., <param>: ...}` entries."""
    refs: list[dict[str, str]] = []
    for part in _split_link_header(value):
        match = re.match(r"<([^>]*)>(.*)$", part, re.DOTALL)
        if match is None:
            continue
        ref = {"uri": match.group(1).strip()}
        for name, quoted, bare in _HEADER_PARAM.findall(match.group(2)):
            ref[name.lower()] = quoted if quoted else (bare or "").strip()
        refs.append(ref)
    return refs


def _cross_origin(value: str | None) -> str | None:
    if value in ("anonymous", "use-credentials"):
        return value
    return None


def _normalize_url(href: str, base_url: str) -> str | None:
    try:
        return urljoin(base_url, href)
    except ValueError:
        return None


class LinkElements(PhaseGatherer):
    meta = GathererMeta(symbol="LinkElements", supported_modes=("navigation",))

    @staticmethod
    async def get_links_from_dom(ctx: PassContext) -> list[dict[str, Any]]:
        links = await ctx.driver.evaluate(LINK_ELEMENTS_EXPRESSION) or []
        return [{**link, "rel": str(link.get("rel") or "").lower()} for link in links]

    @staticmethod
    def get_links_from_headers(ctx: PassContext, load_data: LoadData) -> list[dict[str, Any]]:
        main_record = find_main_document(load_data.network_records, ctx.url)
        if main_record is None:
            return []
        base_url = ctx.base_artifacts.URL.final_displayed_url or ctx.url
        links: list[dict[str, Any]] = []
        for header in main_record.response_headers:
            if str(header.get("name", "")).lower() != "link":
                continue
            for ref in parse_link_header(str(header.get("value", ""))):
                links.append(
                    {
                        "rel": ref.get("rel", "").lower(),
                        "href": _normalize_url(ref["uri"], base_url),
                        "hrefRaw": ref["uri"],
                        "hreflang": ref.get("hreflang", ""),
                        "as": ref.get("as", ""),
                        "crossOrigin": _cross_origin(ref.get("crossorigin")),
                        "node": None,
                        "source": "headers",
                    }
                )
        return links

    async def after_pass(self, ctx: PassContext, load_data: LoadData) -> list[dict[str, Any]]:
        from_dom = await self.get_links_from_dom(ctx)
        from_headers = self.get_links_from_headers(ctx, load_data)
        return [*from_dom, *from_headers]


__all__ = ["LINK_ELEMENTS_EXPRESSION", "LinkElements", "parse_link_header"]
