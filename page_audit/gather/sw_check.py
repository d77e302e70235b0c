"""Service-worker safety check.

Before measuring, make sure no other tab's same-origin service worker
controls clients: a shared worker would skew the measured load. The check is
an explicit state machine fed by two protocol event streams:

    WAITING_FOR_REGISTRATIONS -> WAITING_FOR_ACTIVATION -> RESOLVED

Waiting is bounded by an injectable timer so tests can flush it
deterministically. A timeout passes the check with a logged warning.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol
from urllib.parse import urlsplit

from .errors import MultipleTabsError

logger = logging.getLogger("page_audit.gather.sw_check")

DEFAULT_TIMEOUT_S = 10.0


class CheckState(enum.Enum):
    WAITING_FOR_REGISTRATIONS = "waiting_for_registrations"
    WAITING_FOR_ACTIVATION = "waiting_for_activation"
    RESOLVED = "resolved"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopTimer:
    """Production timer backed by the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def _origin(url: str) -> str:
    parts = urlsplit(url or "")
    return f"{parts.scheme}://{parts.netloc}".lower()


def _version_key(version: dict[str, Any]) -> str:
    if version.get("versionId") is not None:
        return f"id:{version['versionId']}"
    return f"reg:{version.get('registrationId')}:{version.get('scriptURL')}"


def _latest_version(versions: list[dict[str, Any]]) -> dict[str, Any] | None:
    live = [v for v in versions if v.get("status") != "redundant"]
    if not live:
        return None
    with_ids = [v for v in live if str(v.get("versionId", "")).isdigit()]
    if with_ids:
        return max(with_ids, key=lambda v: int(v["versionId"]))
    return live[-1]


class ServiceWorkerCheck:
    def __init__(
        self,
        session: Any,
        page_url: str,
        *,
        timer: Timer | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._session = session
        self._origin = _origin(page_url)
        self._timer = timer or LoopTimer()
        self._timeout = timeout
        self.state = CheckState.WAITING_FOR_REGISTRATIONS
        self._registrations: list[dict[str, Any]] | None = None
        self._versions: dict[str, dict[str, Any]] = {}
        self._versions_seen = False
        self._result: asyncio.Future[None] | None = None

    async def run(self) -> None:
        """Resolve when the page is safe to measure; raise `MultipleTabsError` otherwise."""
        self._result = asyncio.get_running_loop().create_future()
        self._session.on("ServiceWorker.workerRegistrationUpdated", self._on_registrations)
        self._session.on("ServiceWorker.workerVersionUpdated", self._on_versions)
        handle = self._timer.call_later(self._timeout, self._on_timeout)
        try:
            await self._session.send_command("ServiceWorker.enable")
            await self._result
        finally:
            handle.cancel()
            self._session.off("ServiceWorker.workerRegistrationUpdated", self._on_registrations)
            self._session.off("ServiceWorker.workerVersionUpdated", self._on_versions)
            with suppress(Exception):
                await self._session.send_command("ServiceWorker.disable")

    def _on_registrations(self, params: dict[str, Any]) -> None:
        if self.state is CheckState.RESOLVED:
            return
        self._registrations = [
            registration
            for registration in params.get("registrations") or []
            if not registration.get("isDeleted") and _origin(registration.get("scopeURL", "")) == self._origin
        ]
        self.state = CheckState.WAITING_FOR_ACTIVATION
        self._evaluate()

    def _on_versions(self, params: dict[str, Any]) -> None:
        if self.state is CheckState.RESOLVED:
            return
        for version in params.get("versions") or []:
            self._versions[_version_key(version)] = version
        self._versions_seen = True
        self._evaluate()

    def _evaluate(self) -> None:
        if self._registrations is None:
            return
        if not self._registrations:
            self._resolve(None)
            return
        if not self._versions_seen:
            return

        controlled = False
        for registration in self._registrations:
            versions = [
                v for v in self._versions.values() if v.get("registrationId") == registration.get("registrationId")
            ]
            latest = _latest_version(versions)
            if latest is None or latest.get("status") != "activated":
                return
            if latest.get("controlledClients"):
                controlled = True

        self._resolve(MultipleTabsError() if controlled else None)

    def _on_timeout(self) -> None:
        if self.state is CheckState.RESOLVED:
            return
        logger.warning("service worker check timed out in state %s; continuing", self.state.value)
        self._resolve(None)

    def _resolve(self, error: Exception | None) -> None:
        self.state = CheckState.RESOLVED
        if self._result is None or self._result.done():
            return
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(None)


async def assert_no_same_origin_service_worker_clients(
    session: Any, page_url: str, *, timer: Timer | None = None
) -> None:
    await ServiceWorkerCheck(session, page_url, timer=timer).run()


__all__ = [
    "CheckState",
    "LoopTimer",
    "ServiceWorkerCheck",
    "assert_no_same_origin_service_worker_clients",
]
