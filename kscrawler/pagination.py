from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, Set, TypeVar

from kscrawler.config import settings
from kscrawler.results import Blocked, Empty, Error, FetchResult, Ok, describe
from kscrawler.risk_control import RiskController

logger = logging.getLogger("crawler-pagination")

T = TypeVar("T")

TERMINAL_CURSORS = frozenset({"", "no_more"})


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_cursor: str = ""


@dataclass
class PaginationResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    pages_fetched: int = 0
    stop_reason: str = ""
    blocked_retries: int = 0


PageFetcher = Callable[[str], Awaitable[FetchResult[Page[T]]]]


class PaginationEngine:
    """Cursor-driven page loop shared by search, user-video and comment flows.

    Pages are fetched strictly one after another. A Blocked page is retried
    with the same cursor after a cool-down; Empty or Error ends the run and
    keeps what was already collected.
    """

    def __init__(
        self,
        risk: RiskController,
        *,
        empty_streak_cap: int = settings.crawler_empty_streak_cap,
        max_blocked_retries: int = settings.crawler_max_blocked_retries,
    ) -> None:
        self.risk = risk
        self.empty_streak_cap = max(1, int(empty_streak_cap))
        self.max_blocked_retries = max(0, int(max_blocked_retries))

    async def run(
        self,
        fetch_page: PageFetcher[T],
        *,
        page_cap: Optional[int],
        max_wanted: Optional[int] = None,
        item_filter: Optional[Callable[[T], bool]] = None,
        label: str = "",
    ) -> PaginationResult[T]:
        result: PaginationResult[T] = PaginationResult()
        cursor = ""
        visited: Set[str] = set()
        empty_streak = 0
        blocked_in_a_row = 0
        page = 1

        def _wanted_reached() -> bool:
            return max_wanted is not None and len(result.items) >= max_wanted

        while (page_cap is None or page <= page_cap) and not _wanted_reached():
            visited.add(cursor)
            outcome = await fetch_page(cursor)

            if isinstance(outcome, Blocked):
                blocked_in_a_row += 1
                result.blocked_retries += 1
                if blocked_in_a_row > self.max_blocked_retries:
                    logger.error("[%s] still blocked after %d retries, giving up", label, self.max_blocked_retries)
                    result.stop_reason = "blocked"
                    break
                await self.risk.cooldown(outcome.retry_after_s)
                continue
            blocked_in_a_row = 0

            if isinstance(outcome, (Empty, Error)) or not isinstance(outcome, Ok):
                logger.info("[%s] page %d ended the run: %s", label, page, describe(outcome))
                result.stop_reason = "error" if isinstance(outcome, Error) else "empty"
                break

            result.pages_fetched += 1
            fetched = outcome.value
            kept = [item for item in fetched.items if item_filter is None or item_filter(item)]
            result.items.extend(kept)
            logger.info(
                "[%s] page %d: %d items, %d kept, total %d",
                label,
                page,
                len(fetched.items),
                len(kept),
                len(result.items),
            )

            empty_streak = 0 if kept else empty_streak + 1
            if empty_streak >= self.empty_streak_cap:
                result.stop_reason = "empty_streak"
                break

            next_cursor = fetched.next_cursor or ""
            if next_cursor in TERMINAL_CURSORS:
                result.stop_reason = "exhausted"
                break
            if next_cursor == cursor or next_cursor in visited:
                logger.warning("[%s] cursor %r repeated, treating as terminal", label, next_cursor)
                result.stop_reason = "cursor_repeat"
                break

            cursor = next_cursor
            page += 1
            if page_cap is not None and page > page_cap:
                result.stop_reason = "page_cap"
                break
            if _wanted_reached():
                break
            await self.risk.page_delay()

        if not result.stop_reason:
            result.stop_reason = "max_wanted" if _wanted_reached() else "page_cap"
        if max_wanted is not None:
            result.items = result.items[:max_wanted]
        return result
