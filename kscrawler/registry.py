from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from kscrawler.client import KuaishouClient
from kscrawler.models import CrawlerConfig
from kscrawler.risk_control import RiskController
from kscrawler.session_acquirer import Session, SessionAcquirer

logger = logging.getLogger("crawler-session")


@dataclass
class SessionHandle:
    """What a flow gets: the acquirer (if a browser exists), its session and a client."""

    acquirer: Optional[SessionAcquirer]
    session: Session
    client: KuaishouClient

    async def refresh_client(self) -> KuaishouClient:
        """Re-read browser cookies and push them into the live client."""
        if self.acquirer is not None:
            cookies = await self.acquirer.harvest_cookies()
            self.session = self.acquirer.session
            await self.client.update_cookies(cookies)
        return self.client


class SessionRegistry:
    """Process-wide holder for the one shared browser session.

    Created lazily by the first ``acquire``, reused by sibling flows, and torn
    down only by an explicit ``close``.
    """

    def __init__(
        self,
        acquirer_factory: Callable[[], SessionAcquirer] = SessionAcquirer,
        risk: Optional[RiskController] = None,
    ) -> None:
        self._factory = acquirer_factory
        self._risk = risk
        self._lock = asyncio.Lock()
        self._handle: Optional[SessionHandle] = None

    @property
    def current(self) -> Optional[SessionHandle]:
        return self._handle

    async def acquire(self, config: CrawlerConfig) -> Tuple[SessionHandle, bool]:
        """Return the live handle, opening one first if needed; bool is "created"."""
        async with self._lock:
            if self._handle is not None:
                logger.info("Reusing running browser session")
                return self._handle, False
            acquirer = self._factory()
            session = await acquirer.open(config)
            client = acquirer.build_client(self._risk)
            self._handle = SessionHandle(acquirer=acquirer, session=session, client=client)
            return self._handle, True

    async def close(self) -> None:
        async with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await handle.client.aclose()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Closing API client failed: %s", exc)
        if handle.acquirer is not None:
            await handle.acquirer.close()
        logger.info("Browser session closed")


session_registry = SessionRegistry()
