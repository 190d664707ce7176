from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from kscrawler.adapters.base import BaseCrawler
from kscrawler.client import KuaishouClient
from kscrawler.config import CrawlerConfigError
from kscrawler.models import CommentRecord, CrawlerConfig, RunReport, UserProfile, VideoRecord
from kscrawler.normalizer import (
    dedupe_by_id,
    make_video_filter,
    parse_comments,
    parse_feeds,
    parse_photo_detail,
    video_for_storage,
)
from kscrawler.pagination import TERMINAL_CURSORS, Page, PaginationEngine, PaginationResult
from kscrawler.profile_resolver import ProfileResolver
from kscrawler.registry import SessionHandle, SessionRegistry, session_registry
from kscrawler.results import Empty, FetchResult, Ok
from kscrawler.risk_control import RiskController, run_bounded
from kscrawler.storage import OutputLayout, save_json, write_comment_file

logger = logging.getLogger("crawler-kuaishou")


def _require(values: Sequence[str], key: str) -> List[str]:
    cleaned = [str(v).strip() for v in values or [] if str(v).strip()]
    if not cleaned:
        raise CrawlerConfigError(f"{key} is empty, nothing to crawl")
    return cleaned


class KuaishouCrawler(BaseCrawler):
    platform = "kuaishou"

    def __init__(
        self,
        config: CrawlerConfig,
        *,
        registry: SessionRegistry = session_registry,
        risk: Optional[RiskController] = None,
        layout: Optional[OutputLayout] = None,
        engine: Optional[PaginationEngine] = None,
        keep_session: bool = False,
        expand_sub_comments: bool = False,
    ) -> None:
        self.config = config
        self.registry = registry
        self.risk = risk or RiskController.from_settings()
        self.layout = layout or OutputLayout()
        self.engine = engine or PaginationEngine(self.risk)
        self.keep_session = keep_session
        self.expand_sub_comments = expand_sub_comments
        self.handle: Optional[SessionHandle] = None
        self._owns_session = False

    async def start(self) -> None:
        if self.handle is not None:
            return
        self.handle, self._owns_session = await self.registry.acquire(self.config)

    @property
    def client(self) -> KuaishouClient:
        if self.handle is None:
            raise RuntimeError("crawler not started")
        return self.handle.client

    def new_report(self, mode: str) -> RunReport:
        report = RunReport(mode=mode)
        if self.handle is not None:
            report.degraded = self.handle.session.degraded
            report.logged_in = self.handle.session.logged_in
        return report

    def _note_stop(self, report: RunReport, label: str, result: PaginationResult) -> None:
        if result.stop_reason in ("error", "blocked"):
            report.errors.append(f"{label}:{result.stop_reason}")

    def _persist(self, report: RunReport, path: Path, data: Any) -> None:
        try:
            report.output_paths.append(str(save_json(path, data)))
        except OSError as exc:
            logger.error("Writing %s failed: %s", path, exc)
            report.errors.append(f"write_failed:{path}")

    async def _fan_out(self, items: Sequence[str], worker: Callable[[str], Any], label: str) -> List[Any]:
        return await run_bounded(items, worker, limit=self.risk.concurrency_limit, label=label)

    def _search_fetcher(self, keyword: str):
        search_session = {"id": ""}

        async def fetch(cursor: str) -> FetchResult[Page[VideoRecord]]:
            result = await self.client.search_videos(keyword, cursor, search_session["id"])
            if not isinstance(result, Ok):
                return result
            data = result.value.get("visionSearchPhoto")
            if not isinstance(data, dict) or not isinstance(data.get("feeds"), list):
                logger.warning("Search %r: unexpected payload shape %s", keyword, list(result.value))
                return Empty("bad_shape")
            search_session["id"] = str(data.get("searchSessionId") or search_session["id"])
            return Ok(Page(parse_feeds(data["feeds"], keyword), str(data.get("pcursor") or "")))

        return fetch

    def _user_videos_fetcher(self, user_id: str):
        async def fetch(cursor: str) -> FetchResult[Page[VideoRecord]]:
            result = await self.client.get_user_videos_page(user_id, cursor)
            if not isinstance(result, Ok):
                return result
            data = result.value.get("visionProfilePhotoList")
            if not isinstance(data, dict) or not isinstance(data.get("feeds"), list):
                return Empty("bad_shape")
            return Ok(Page(parse_feeds(data["feeds"]), str(data.get("pcursor") or "")))

        return fetch

    def _comments_fetcher(self, video_id: str):
        async def fetch(cursor: str) -> FetchResult[Page[CommentRecord]]:
            result = await self.client.get_comments_page(video_id, cursor)
            if not isinstance(result, Ok):
                return result
            data = result.value.get("visionCommentList")
            if not isinstance(data, dict) or not isinstance(data.get("rootComments"), list):
                return Empty("bad_shape")
            return Ok(Page(parse_comments(data["rootComments"]), str(data.get("pcursor") or "")))

        return fetch

    def _sub_comments_fetcher(self, video_id: str, root_id: str, first_cursor: str):
        async def fetch(cursor: str) -> FetchResult[Page[CommentRecord]]:
            # the root comment already carried the first page
            result = await self.client.get_sub_comments_page(video_id, root_id, cursor or first_cursor)
            if not isinstance(result, Ok):
                return result
            data = result.value.get("visionSubCommentList")
            if not isinstance(data, dict) or not isinstance(data.get("subComments"), list):
                return Empty("bad_shape")
            return Ok(Page(parse_comments(data["subComments"], nested=False), str(data.get("pcursor") or "")))

        return fetch

    async def _expand_sub_comments(self, video_id: str, comment: CommentRecord) -> CommentRecord:
        cursor = comment.sub_comments_cursor
        if cursor in TERMINAL_CURSORS or comment.reply_count <= len(comment.sub_comments):
            return comment
        more = await self.engine.run(
            self._sub_comments_fetcher(video_id, comment.id, cursor),
            page_cap=self.config.max_comment_pages,
            label=f"sub-comments:{comment.id}",
        )
        merged = dedupe_by_id([*comment.sub_comments, *more.items])
        return comment.model_copy(update={"sub_comments": merged})

    async def collect_comments(
        self,
        video_id: str,
        *,
        page_cap: Optional[int],
        max_wanted: Optional[int] = None,
    ) -> PaginationResult[CommentRecord]:
        result = await self.engine.run(
            self._comments_fetcher(video_id),
            page_cap=page_cap,
            max_wanted=max_wanted,
            label=f"comments:{video_id}",
        )
        if self.expand_sub_comments and result.items:
            result.items = [await self._expand_sub_comments(video_id, c) for c in result.items]
        return result

    async def _comments_into(self, report: RunReport, directory: Path, video_ids: Sequence[str]) -> None:
        async def _one(video_id: str) -> int:
            result = await self.collect_comments(video_id, page_cap=self.config.max_comment_pages)
            self._note_stop(report, f"comments:{video_id}", result)
            path = write_comment_file(directory, video_id, result.items)
            report.output_paths.append(str(path))
            return len(result.items)

        counts = await self._fan_out(list(video_ids), _one, "comments")
        for video_id, count in zip(video_ids, counts):
            if count is None:
                report.errors.append(f"comments:{video_id}:failed")
            else:
                report.add_count("comments", count)

    async def fetch_video_detail(self, video_id: str) -> Optional[VideoRecord]:
        result = await self.client.get_video_detail(video_id)
        if not isinstance(result, Ok):
            logger.warning("Video %s detail unavailable", video_id)
            return None
        return parse_photo_detail(result.value)

    def _video_rows(self, videos: Sequence[VideoRecord]) -> List[Dict[str, Any]]:
        save_url = self.config.video_filter.save_video_url
        return [video_for_storage(video, save_url) for video in videos]

    async def search(self) -> RunReport:
        keywords = _require(self.config.search_keywords, "search_keywords")
        await self.start()
        report = self.new_report("search")
        item_filter = make_video_filter(self.config.video_filter)
        for keyword in keywords:
            result = await self.engine.run(
                self._search_fetcher(keyword),
                page_cap=self.config.max_pages,
                item_filter=item_filter,
                label=f"search:{keyword}",
            )
            self._note_stop(report, f"search:{keyword}", result)
            videos = dedupe_by_id(result.items)
            report.add_count("videos", len(videos))
            directory = self.layout.search_dir(keyword)
            self._persist(report, directory / "video_list.json", self._video_rows(videos))
            if videos:
                try:
                    save_json(self.layout.search_debug_path(keyword), self._video_rows(videos[:3]))
                except OSError as exc:
                    logger.warning("Search sample for %r not written: %s", keyword, exc)
            if self.config.get_comments and videos:
                await self._comments_into(report, directory / "comments", [v.id for v in videos])
        return report

    async def get_specified_videos(self) -> RunReport:
        video_ids = _require(self.config.video_id_list, "video_id_list")
        await self.start()
        report = self.new_report("detail")
        details = await self._fan_out(video_ids, self.fetch_video_detail, "video-detail")
        videos = [video for video in details if video is not None]
        for video_id, video in zip(video_ids, details):
            if video is None:
                report.errors.append(f"detail:{video_id}:missing")
        report.add_count("videos", len(videos))
        self._persist(report, self.layout.detail_dir() / "video_infos.json", self._video_rows(videos))
        if self.config.get_comments:
            await self._comments_into(report, self.layout.detail_dir() / "comments", video_ids)
        return report

    async def _crawl_user(
        self,
        report: RunReport,
        user_id: str,
        directory: Path,
        *,
        profile_name: str,
        videos_name: str,
        with_details: bool,
    ) -> None:
        profile = await self.get_user_profile(user_id, persist=False)
        if profile is not None:
            report.add_count("profiles", 1)
            self._persist(report, directory / profile_name, profile)
        else:
            report.errors.append(f"profile:{user_id}:missing")

        result = await self.engine.run(
            self._user_videos_fetcher(user_id),
            page_cap=self.config.max_pages,
            item_filter=make_video_filter(self.config.video_filter),
            label=f"user-videos:{user_id}",
        )
        self._note_stop(report, f"user-videos:{user_id}", result)
        videos = dedupe_by_id(result.items)
        report.add_count("videos", len(videos))
        self._persist(report, directory / videos_name, self._video_rows(videos))

        video_ids = [video.id for video in videos]
        if with_details and video_ids:
            details = await self._fan_out(video_ids, self.fetch_video_detail, "video-detail")
            for video in details:
                if video is not None:
                    self._persist(report, directory / "details" / f"{video.id}.json", self._video_rows([video])[0])
                    report.add_count("details", 1)
        if self.config.get_comments and video_ids:
            await self._comments_into(report, directory / "comments", video_ids)

    async def get_creators_and_videos(self) -> RunReport:
        creator_ids = _require(self.config.creator_id_list, "creator_id_list")
        await self.start()
        report = self.new_report("creator")
        for creator_id in creator_ids:
            await self._crawl_user(
                report,
                creator_id,
                self.layout.creator_dir(creator_id),
                profile_name="creator_info.json",
                videos_name="video_list.json",
                with_details=self.config.get_video_detail,
            )
        return report

    async def monitor_users(self) -> RunReport:
        user_ids = _require(self.config.monitor_user_list, "monitor_user_list")
        await self.start()
        report = self.new_report("monitor")
        for user_id in user_ids:
            await self._crawl_user(
                report,
                user_id,
                self.layout.monitor_dir(user_id),
                profile_name="profile.json",
                videos_name="videos.json",
                with_details=False,
            )
        return report

    async def get_user_profile(self, user_id: str, persist: bool = True) -> Optional[UserProfile]:
        await self.start()
        acquirer = self.handle.acquirer if self.handle else None
        result = await ProfileResolver(self.client, acquirer).lookup(user_id)
        if not isinstance(result, Ok):
            logger.warning("User %s profile not found", user_id)
            return None
        if persist:
            save_json(self.layout.user_profile_path(user_id), result.value)
        return result.value

    async def get_user_videos(self, user_id: str, max_count: int = 20) -> List[VideoRecord]:
        await self.start()
        # walks until max_count or the empty-streak cap, not a page count
        result = await self.engine.run(
            self._user_videos_fetcher(user_id),
            page_cap=None,
            max_wanted=max_count,
            item_filter=make_video_filter(self.config.video_filter),
            label=f"user-videos:{user_id}",
        )
        videos = dedupe_by_id(result.items)
        save_json(self.layout.user_videos_path(user_id), self._video_rows(videos))
        return videos

    async def get_video_comments(self, video_id: str, max_count: int = 20) -> List[CommentRecord]:
        await self.start()
        result = await self.collect_comments(video_id, page_cap=None, max_wanted=max_count)
        path = self.layout.video_comments_path(video_id)
        write_comment_file(path.parent, video_id, result.items)
        return result.items

    async def resolve_user_id(self, handle: str) -> Optional[str]:
        await self.start()
        acquirer = self.handle.acquirer if self.handle else None
        result = await ProfileResolver(self.client, acquirer).resolve_user_id(handle)
        return result.value if isinstance(result, Ok) else None

    async def close(self) -> None:
        if self._owns_session and not self.keep_session:
            await self.registry.close()
        self.handle = None
        self._owns_session = False
