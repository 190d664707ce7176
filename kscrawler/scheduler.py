from __future__ import annotations

import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from kscrawler.config import CrawlerConfigError, settings
from kscrawler.models import CrawlerConfig
from kscrawler.processor import run_flow
from kscrawler.registry import SessionRegistry, session_registry
from kscrawler.storage import OutputLayout

logger = logging.getLogger("crawler-scheduler")


def default_cleanup_roots(layout: Optional[OutputLayout] = None) -> List[Path]:
    layout = layout or OutputLayout()
    return [Path(settings.crawler_browser_data_dir), layout.temp_root]


def default_dated_roots(layout: Optional[OutputLayout] = None) -> List[Path]:
    """Roots laid out as ``<root>/<user_id>/<YYYY-MM-DD>``."""
    layout = layout or OutputLayout()
    return [layout.monitor_root()]


def _children(root: Path) -> List[Path]:
    return list(root.iterdir()) if root.is_dir() else []


def cleanup_stale_artifacts(
    roots: Iterable[Path],
    *,
    dated_roots: Iterable[Path] = (),
    max_age_days: float = settings.crawler_retention_days,
    now: Optional[float] = None,
    keep: Sequence[Path] = (),
) -> List[Path]:
    """Delete entries whose mtime is older than the cutoff.

    Direct children of ``roots`` are aged; for ``dated_roots`` the per-day
    directories one level down are aged instead, since every new run bumps
    the mtime of the user directory above them. Paths in ``keep`` (e.g. the
    live browser profile) are never touched.
    """
    cutoff = (time.time() if now is None else now) - max_age_days * 86400
    protected = {Path(p).resolve() for p in keep}
    candidates: List[Path] = []
    for root in roots:
        candidates.extend(_children(Path(root)))
    for root in dated_roots:
        for user_dir in _children(Path(root)):
            candidates.extend(_children(user_dir))

    removed: List[Path] = []
    for child in candidates:
        try:
            if child.resolve() in protected or child.stat().st_mtime >= cutoff:
                continue
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed.append(child)
        except OSError as exc:
            logger.warning("Cleanup skipped %s: %s", child, exc)
    if removed:
        logger.info("Retention cleanup removed %d stale entries", len(removed))
    return removed


async def run_cleanup_loop(
    roots: Optional[Iterable[Path]] = None,
    stop_event: Optional[asyncio.Event] = None,
    registry: SessionRegistry = session_registry,
    dated_roots: Optional[Iterable[Path]] = None,
) -> None:
    roots = list(roots) if roots is not None else default_cleanup_roots()
    dated_roots = list(dated_roots) if dated_roots is not None else default_dated_roots()
    interval = max(60, settings.crawler_cleanup_interval_s)
    while stop_event is None or not stop_event.is_set():
        keep: List[Path] = []
        handle = registry.current
        if handle is not None and handle.acquirer is not None and handle.acquirer.profile_dir is not None:
            keep.append(handle.acquirer.profile_dir)
        await asyncio.to_thread(cleanup_stale_artifacts, roots, dated_roots=dated_roots, keep=keep)
        try:
            if stop_event is None:
                await asyncio.sleep(interval)
            else:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run_monitor_schedule(
    config: CrawlerConfig,
    *,
    registry: SessionRegistry = session_registry,
    layout: Optional[OutputLayout] = None,
    stop_event: Optional[asyncio.Event] = None,
    iterations: Optional[int] = None,
) -> int:
    """Run the monitor flow now, then every ``schedule_interval`` minutes when enabled.

    Returns the number of completed runs. The browser session stays open
    between runs and is closed on exit.
    """
    stop_event = stop_event or asyncio.Event()
    cleanup_task: Optional[asyncio.Task] = None
    if config.schedule_enabled:
        cleanup_task = asyncio.create_task(run_cleanup_loop(stop_event=stop_event, registry=registry))
    runs = 0
    try:
        while not stop_event.is_set():
            try:
                report = await run_flow("monitor", config, registry=registry, layout=layout, keep_session=True)
                logger.info("Monitor run %d finished: %s", runs + 1, report.counts)
            except CrawlerConfigError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Monitor run failed: %s", exc)
            runs += 1
            if not config.schedule_enabled or (iterations is not None and runs >= iterations):
                break
            wait_s = max(1, config.schedule_interval) * 60
            logger.info("Next monitor run in %d minutes", config.schedule_interval)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass
    finally:
        stop_event.set()
        if cleanup_task is not None:
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass
        await registry.close()
    return runs
