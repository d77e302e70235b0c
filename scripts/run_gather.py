#!/usr/bin/env python3
import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from page_audit.gather.config import GatherSettings  # noqa: E402
from page_audit.gather.errors import GatherError  # noqa: E402
from page_audit.gather.navigation_runner import navigation_gather  # noqa: E402
from page_audit.gather.session_cdp import fetch_ws_url  # noqa: E402


def _to_json(value):
    if isinstance(value, GatherError):
        return value.to_dict()
    if isinstance(value, BaseException):
        return {"error": True, "type": type(value).__name__, "message": str(value)}
    return str(value)


def main() -> int:
    if len(sys.argv) != 2:
        print("usage: run_gather.py <url>", file=sys.stderr)
        return 2

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    settings = GatherSettings.from_env()
    print(
        f"[gather] cdp={settings.cdp_host}:{settings.cdp_port} | "
        f"formFactor={settings.form_factor} | throttling={settings.throttling_method}",
        file=sys.stderr,
    )

    page = fetch_ws_url(settings.cdp_host, settings.cdp_port)
    result = asyncio.run(navigation_gather(page, sys.argv[1], config={"settings": settings}))
    json.dump(result.artifacts, sys.stdout, indent=2, default=_to_json)
    print()
    return 1 if result.artifacts.get("PageLoadError") else 0


if __name__ == "__main__":
    sys.exit(main())
