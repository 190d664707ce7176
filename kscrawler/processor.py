from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from kscrawler.adapters import KuaishouCrawler
from kscrawler.config import CrawlerConfigError, load_crawler_config
from kscrawler.models import CrawlerConfig, RunReport
from kscrawler.registry import SessionRegistry, session_registry
from kscrawler.storage import OutputLayout
from kscrawler.store import job_store

logger = logging.getLogger("crawler-processor")

CONFIG_FLOWS = {"search", "detail", "creator", "monitor"}
TARGET_FLOWS = {"profile", "videos", "comments", "resolve"}


async def run_flow(
    mode: str,
    config: CrawlerConfig,
    *,
    target_id: Optional[str] = None,
    count: int = 20,
    registry: SessionRegistry = session_registry,
    layout: Optional[OutputLayout] = None,
    keep_session: bool = False,
    expand_sub_comments: bool = False,
) -> RunReport:
    """Run one named flow to completion and report what it produced.

    Raises ``CrawlerConfigError`` for an unusable configuration; every other
    failure ends up in ``RunReport.errors`` with partial output kept on disk.
    """
    if mode in TARGET_FLOWS and not str(target_id or "").strip():
        raise CrawlerConfigError(f"mode {mode!r} needs a target id")
    if mode not in CONFIG_FLOWS | TARGET_FLOWS | {"login"}:
        raise CrawlerConfigError(f"unknown mode {mode!r}")

    crawler = KuaishouCrawler(
        config,
        registry=registry,
        layout=layout,
        keep_session=keep_session,
        expand_sub_comments=expand_sub_comments,
    )
    try:
        if mode == "search":
            return await crawler.search()
        if mode == "detail":
            return await crawler.get_specified_videos()
        if mode == "creator":
            return await crawler.get_creators_and_videos()
        if mode == "monitor":
            return await crawler.monitor_users()

        await crawler.start()
        report = crawler.new_report(mode)
        target = str(target_id or "").strip()
        if mode == "login":
            if not report.logged_in and crawler.handle and crawler.handle.acquirer:
                report.logged_in = await crawler.handle.acquirer.login_by_qr(config.login_timeout)
                if report.logged_in:
                    await crawler.handle.refresh_client()
            if not report.logged_in:
                report.errors.append("login:not_logged_in")
        elif mode == "profile":
            profile = await crawler.get_user_profile(target)
            report.add_count("profiles", 1 if profile else 0)
            if profile is None:
                report.errors.append(f"profile:{target}:missing")
            else:
                report.output_paths.append(str(crawler.layout.user_profile_path(target)))
        elif mode == "videos":
            videos = await crawler.get_user_videos(target, max_count=count)
            report.add_count("videos", len(videos))
            report.output_paths.append(str(crawler.layout.user_videos_path(target)))
        elif mode == "comments":
            comments = await crawler.get_video_comments(target, max_count=count)
            report.add_count("comments", len(comments))
            report.output_paths.append(str(crawler.layout.video_comments_path(target)))
        elif mode == "resolve":
            user_id = await crawler.resolve_user_id(target)
            if user_id:
                report.add_count("resolved", 1)
                report.output_paths.append(user_id)
            else:
                report.errors.append(f"resolve:{target}:not_found")
        return report
    finally:
        await crawler.close()


async def process_job(message: Dict[str, Any]) -> Optional[RunReport]:
    job_id = str(message["job_id"])
    await job_store.set_status(job_id, "running")
    try:
        config = load_crawler_config(overrides=message.get("config") or {})
        report = await run_flow(
            str(message["mode"]),
            config,
            target_id=message.get("target_id"),
            count=int(message.get("count") or 20),
            keep_session=True,
        )
    except (CrawlerConfigError, ValueError) as exc:
        logger.error("Job %s rejected: %s", job_id, exc)
        await job_store.set_status(job_id, "failed", error=str(exc)[:500])
        return None
    except Exception as exc:  # noqa: BLE001
        logger.exception("Job %s crashed: %s", job_id, exc)
        await job_store.set_status(job_id, "failed", error=f"crawl_exception:{str(exc)[:400]}")
        return None

    total = sum(report.counts.values())
    status = "completed" if total or not report.errors else "failed"
    await job_store.set_status(job_id, status, report=report.model_dump(mode="json"))
    logger.info("Job %s %s: %s", job_id, status, report.counts)
    return report
