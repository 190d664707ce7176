from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx

from kscrawler import queries
from kscrawler.config import settings
from kscrawler.credentials import CredentialStore
from kscrawler.results import Blocked, Empty, Error, FetchResult, Ok
from kscrawler.risk_control import RiskController

logger = logging.getLogger("crawler-client")


@dataclass
class _HttpHandle:
    """One httpx client bound to one cookie snapshot."""

    client: httpx.AsyncClient
    inflight: int = 0
    retired: bool = False


def _has_usable_data(data: Any) -> bool:
    if isinstance(data, dict):
        return any(value is not None for value in data.values())
    return data is not None


class KuaishouClient:
    """Stateless GraphQL request executor.

    Cookies are frozen per underlying httpx client. ``update_cookies`` builds a
    new client; requests already running keep using the one they started on.
    Endpoint helpers never retry: backoff is the caller's decision.
    """

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        *,
        user_agent: Optional[str] = None,
        proxy_url: Optional[str] = None,
        risk: Optional[RiskController] = None,
        base_url: str = settings.crawler_base_url,
        graphql_url: str = settings.crawler_graphql_url,
        timeout_s: float = settings.crawler_http_timeout_s,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.risk = risk or RiskController.from_settings()
        self.base_url = base_url.rstrip("/")
        self.graphql_url = graphql_url
        self.user_agent = user_agent or self.risk.user_agents.sample()
        self.proxy_url = proxy_url
        self._timeout = httpx.Timeout(timeout_s)
        self._transport = transport
        self._credentials = CredentialStore((credentials or CredentialStore()).as_dict())
        self._handle = _HttpHandle(self._build_http_client(self._credentials))

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    def _base_headers(self, credentials: CredentialStore) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": settings.crawler_accept_language,
            "Content-Type": "application/json",
            "Origin": self.base_url,
            "Referer": self.base_url,
        }
        cookie_header = credentials.as_header_string()
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    def _build_http_client(self, credentials: CredentialStore) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {
            "headers": self._base_headers(credentials),
            "timeout": self._timeout,
            "follow_redirects": True,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy_url:
            kwargs["proxy"] = self.proxy_url
        return httpx.AsyncClient(**kwargs)

    async def update_cookies(self, cookies: Mapping[str, str]) -> None:
        fresh = CredentialStore(cookies)
        old = self._handle
        self._credentials = fresh
        self._handle = _HttpHandle(self._build_http_client(fresh))
        old.retired = True
        if old.inflight == 0:
            await old.client.aclose()
        logger.info("Client cookies replaced (%d cookies)", len(fresh))

    async def _release(self, handle: _HttpHandle) -> None:
        handle.inflight -= 1
        if handle.retired and handle.inflight == 0:
            await handle.client.aclose()

    async def aclose(self) -> None:
        self._handle.retired = True
        if self._handle.inflight == 0:
            await self._handle.client.aclose()

    def _referer(self, path: str = "") -> str:
        return f"{self.base_url}{path}"

    async def call(
        self,
        operation: str,
        variables: Dict[str, Any],
        query: str,
        *,
        referer: Optional[str] = None,
    ) -> FetchResult[Dict[str, Any]]:
        await self.risk.pre_call_delay()
        headers = {
            "Referer": referer or self._referer(),
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
            "Pragma": "no-cache",
            "Cache-Control": "no-cache",
        }
        body = {"operationName": operation, "variables": variables, "query": query}
        handle = self._handle
        handle.inflight += 1
        try:
            response = await handle.client.post(self.graphql_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("GraphQL %s transport failure: %s", operation, exc)
            return Error(f"request_failed:{type(exc).__name__}:{str(exc)[:160]}")
        finally:
            await self._release(handle)
        await self.risk.post_call_delay()
        return self._classify(operation, response)

    def _classify(self, operation: str, response: httpx.Response) -> FetchResult[Dict[str, Any]]:
        status = response.status_code
        if status == 403:
            hint = self.risk.draw_cooldown_s()
            logger.error("GraphQL %s got 403, likely rate limited; retry after %.0fs", operation, hint)
            return Blocked(retry_after_s=hint)
        if status < 200 or status >= 300:
            logger.warning("GraphQL %s unexpected status %s", operation, status)
            return Error(f"http_{status}:{response.text[:120]}")
        try:
            payload = response.json()
        except ValueError as exc:
            return Error(f"invalid_json:{str(exc)[:120]}")
        if not isinstance(payload, dict):
            return Error("invalid_json_payload")

        data = payload.get("data")
        errors = payload.get("errors")
        if errors and not _has_usable_data(data):
            logger.warning("GraphQL %s errors without data: %s", operation, str(errors)[:300])
            return Empty(f"graphql_errors:{str(errors)[:120]}")
        if not _has_usable_data(data):
            return Empty("no_data")
        if errors:
            logger.info("GraphQL %s returned partial data with errors: %s", operation, str(errors)[:200])
        return Ok(data)

    async def search_videos(
        self,
        keyword: str,
        cursor: str = "",
        search_session_id: str = "",
    ) -> FetchResult[Dict[str, Any]]:
        variables = {
            "keyword": keyword,
            "pcursor": cursor,
            "page": "search",
            "searchSessionId": search_session_id,
            "webPageArea": "",
        }
        return await self.call(
            queries.SEARCH_PHOTO_OPERATION,
            variables,
            queries.SEARCH_PHOTO_QUERY,
            referer=self._referer(f"/search/video?searchKey={quote(keyword)}"),
        )

    async def get_video_detail(self, photo_id: str) -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.PHOTO_DETAIL_OPERATION,
            {"photoId": photo_id},
            queries.PHOTO_DETAIL_QUERY,
            referer=self._referer(f"/short-video/{photo_id}"),
        )

    async def get_comments_page(self, photo_id: str, cursor: str = "") -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.COMMENT_LIST_OPERATION,
            {"photoId": photo_id, "pcursor": cursor},
            queries.COMMENT_LIST_QUERY,
            referer=self._referer(f"/short-video/{photo_id}"),
        )

    async def get_sub_comments_page(
        self,
        photo_id: str,
        root_comment_id: str,
        cursor: str = "",
    ) -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.SUB_COMMENT_LIST_OPERATION,
            {"photoId": photo_id, "rootCommentId": root_comment_id, "pcursor": cursor},
            queries.SUB_COMMENT_LIST_QUERY,
            referer=self._referer(f"/short-video/{photo_id}"),
        )

    async def get_user_profile(self, user_id: str) -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.USER_PROFILE_OPERATION,
            {"userId": user_id},
            queries.USER_PROFILE_QUERY,
            referer=self._referer(f"/profile/{user_id}"),
        )

    async def get_vision_profile(self, user_id: str) -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.VISION_PROFILE_OPERATION,
            {"userId": user_id},
            queries.VISION_PROFILE_QUERY,
            referer=self._referer(f"/profile/{user_id}"),
        )

    async def get_user_videos_page(self, user_id: str, cursor: str = "") -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.USER_PHOTO_LIST_OPERATION,
            {"userId": user_id, "pcursor": cursor, "page": "profile", "webPageArea": ""},
            queries.USER_PHOTO_LIST_QUERY,
            referer=self._referer(f"/profile/{user_id}"),
        )

    async def search_users(self, keyword: str, cursor: str = "") -> FetchResult[Dict[str, Any]]:
        return await self.call(
            queries.SEARCH_USER_OPERATION,
            {"keyword": keyword, "pcursor": cursor, "searchSessionId": ""},
            queries.SEARCH_USER_QUERY,
            referer=self._referer(f"/search/author?searchKey={quote(keyword)}"),
        )

    async def fetch_profile_page(self, user_id: str) -> FetchResult[Tuple[str, str]]:
        """GET the public profile page; Ok carries (final_url, html)."""
        handle = self._handle
        handle.inflight += 1
        try:
            response = await handle.client.get(
                self._referer(f"/profile/{quote(user_id)}"),
                headers={"Accept": "text/html,application/xhtml+xml,*/*;q=0.8"},
            )
        except httpx.HTTPError as exc:
            return Error(f"request_failed:{type(exc).__name__}:{str(exc)[:160]}")
        finally:
            await self._release(handle)
        if response.status_code == 403:
            return Blocked(retry_after_s=self.risk.draw_cooldown_s())
        if response.status_code != 200:
            return Error(f"http_{response.status_code}")
        return Ok((str(response.url), response.text))

    async def ping(self) -> bool:
        """True when the session cookie exists and an authenticated page loads."""
        if not self._credentials.has("passToken"):
            return False
        result = await self.fetch_profile_page("")
        return isinstance(result, Ok)
