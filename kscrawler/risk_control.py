from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

from kscrawler.config import Settings, settings

logger = logging.getLogger("crawler-risk")

T = TypeVar("T")
R = TypeVar("R")


def _ordered(lo: float, hi: float) -> Tuple[float, float]:
    lo = max(0.0, float(lo))
    hi = max(0.0, float(hi))
    if hi < lo:
        hi = lo
    return lo, hi


class UserAgentPool:
    def __init__(self, raw_pool: str) -> None:
        parsed = [item.strip() for item in raw_pool.split("|") if item.strip()]
        self._pool = parsed or ["Mozilla/5.0"]

    def sample(self) -> str:
        return random.choice(self._pool)


class RiskController:
    """Randomized pacing shared by the API client and the pagination engine.

    All waits go through ``self._sleep`` so tests can zero them out.
    """

    def __init__(
        self,
        *,
        user_agent_pool: str = "",
        pre_delay_ms: Tuple[float, float] = (1000, 3000),
        post_delay_ms: Tuple[float, float] = (500, 2000),
        page_delay_ms: Tuple[float, float] = (1000, 3000),
        blocked_cooldown_s: Tuple[float, float] = (30, 60),
        concurrency_limit: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.user_agents = UserAgentPool(user_agent_pool)
        self.pre_delay_ms = _ordered(*pre_delay_ms)
        self.post_delay_ms = _ordered(*post_delay_ms)
        self.page_delay_ms = _ordered(*page_delay_ms)
        self.blocked_cooldown_s = _ordered(*blocked_cooldown_s)
        self.concurrency_limit = max(1, int(concurrency_limit))
        self._sleep = sleep

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "RiskController":
        return cls(
            user_agent_pool=cfg.crawler_user_agent_pool,
            pre_delay_ms=(cfg.crawler_pre_delay_ms_min, cfg.crawler_pre_delay_ms_max),
            post_delay_ms=(cfg.crawler_post_delay_ms_min, cfg.crawler_post_delay_ms_max),
            page_delay_ms=(cfg.crawler_page_delay_ms_min, cfg.crawler_page_delay_ms_max),
            blocked_cooldown_s=(cfg.crawler_blocked_cooldown_s_min, cfg.crawler_blocked_cooldown_s_max),
            concurrency_limit=cfg.crawler_concurrency_limit,
        )

    async def _sleep_ms(self, bounds: Tuple[float, float]) -> None:
        lo, hi = bounds
        if lo <= 0 and hi <= 0:
            return
        await self._sleep(random.uniform(lo, hi) / 1000)

    async def pre_call_delay(self) -> None:
        await self._sleep_ms(self.pre_delay_ms)

    async def post_call_delay(self) -> None:
        await self._sleep_ms(self.post_delay_ms)

    async def page_delay(self) -> None:
        await self._sleep_ms(self.page_delay_ms)

    async def pause(self, lo_ms: float, hi_ms: float) -> None:
        await self._sleep_ms(_ordered(lo_ms, hi_ms))

    def draw_cooldown_s(self) -> float:
        lo, hi = self.blocked_cooldown_s
        return random.uniform(lo, hi) if hi > 0 else 0.0

    async def cooldown(self, seconds: Optional[float] = None) -> float:
        wait_s = float(seconds) if seconds and seconds > 0 else self.draw_cooldown_s()
        if wait_s > 0:
            logger.warning("Soft-blocked, cooling down for %.1fs", wait_s)
            await self._sleep(wait_s)
        return wait_s


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int = 3,
    label: str = "task",
) -> List[Optional[R]]:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    A failing item yields ``None`` in its slot instead of cancelling siblings.
    """
    semaphore = asyncio.Semaphore(max(1, int(limit)))

    async def _guarded(item: T) -> Optional[R]:
        async with semaphore:
            try:
                return await worker(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("%s failed for %s: %s", label, item, exc)
                return None

    return list(await asyncio.gather(*(_guarded(item) for item in items)))
