from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from kscrawler.client import KuaishouClient
from kscrawler.models import UserProfile
from kscrawler.normalizer import extract_user_id_from_url, parse_profile_html, parse_user_profile, parse_vision_profile
from kscrawler.results import Blocked, Empty, Error, FetchResult, Ok, describe
from kscrawler.session_acquirer import SessionAcquirer

logger = logging.getLogger("crawler-profile")


@dataclass(frozen=True)
class ProfileStrategy:
    name: str
    fetch: Callable[[str], Awaitable[FetchResult[UserProfile]]]


class ProfileResolver:
    """Ordered profile lookups; the next strategy runs only after Empty or Error."""

    def __init__(self, client: KuaishouClient, acquirer: Optional[SessionAcquirer] = None) -> None:
        self.client = client
        self.acquirer = acquirer
        self.strategies: List[ProfileStrategy] = [
            ProfileStrategy("userProfile", self._from_user_profile),
            ProfileStrategy("visionProfile", self._from_vision_profile),
            ProfileStrategy("profileHtml", self._from_profile_html),
        ]

    async def _from_user_profile(self, user_id: str) -> FetchResult[UserProfile]:
        result = await self.client.get_user_profile(user_id)
        if not isinstance(result, Ok):
            return result
        parsed = parse_user_profile(result.value, user_id)
        return Ok(parsed) if parsed is not None else Empty("user_profile_shape")

    async def _from_vision_profile(self, user_id: str) -> FetchResult[UserProfile]:
        result = await self.client.get_vision_profile(user_id)
        if not isinstance(result, Ok):
            return result
        parsed = parse_vision_profile(result.value, user_id)
        return Ok(parsed) if parsed is not None else Empty("vision_profile_shape")

    async def _from_profile_html(self, user_id: str) -> FetchResult[UserProfile]:
        result = await self.client.fetch_profile_page(user_id)
        if not isinstance(result, Ok):
            return result
        final_url, html = result.value
        parsed = parse_profile_html(html, user_id, final_url)
        return Ok(parsed) if parsed is not None else Empty("profile_html_invalid")

    async def lookup(self, user_id: str) -> FetchResult[UserProfile]:
        last: FetchResult[UserProfile] = Empty("no_strategy")
        for strategy in self.strategies:
            result = await strategy.fetch(user_id)
            if isinstance(result, Ok):
                logger.info("Profile %s found via %s", user_id, strategy.name)
                return result
            if isinstance(result, Blocked):
                return result
            logger.info("Profile %s via %s: %s", user_id, strategy.name, describe(result))
            last = result
        return last

    async def is_valid_user_id(self, id_or_url: str) -> bool:
        user_id = extract_user_id_from_url(id_or_url)
        if not user_id:
            return False
        return isinstance(await self.lookup(user_id), Ok)

    async def resolve_user_id(self, handle: str) -> FetchResult[str]:
        """Display name / handle -> stable user id. Search API first, then the search UI."""
        handle = str(handle or "").strip()
        if not handle:
            return Error("empty_handle")
        direct = extract_user_id_from_url(handle)
        if direct != handle:
            return Ok(direct)

        result = await self.client.search_users(handle)
        if isinstance(result, Blocked):
            return result
        if isinstance(result, Ok):
            users = ((result.value.get("visionSearchUser") or {}).get("users")) or []
            exact = [u for u in users if handle in (str(u.get("user_name") or ""), str(u.get("kwaiId") or ""))]
            chosen = (exact or users or [None])[0]
            if chosen and chosen.get("user_id"):
                return Ok(str(chosen["user_id"]))

        if self.acquirer is not None:
            user_id = await self.acquirer.resolve_via_author_search(handle)
            if user_id:
                return Ok(user_id)
        return Empty("user_not_found")
