from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import uvicorn

from kscrawler.config import CrawlerConfigError, load_crawler_config, settings, write_default_config
from kscrawler.logging_config import setup_logging
from kscrawler.models import RunReport
from kscrawler.processor import run_flow
from kscrawler.scheduler import run_monitor_schedule
from kscrawler.worker import run_worker

logger = logging.getLogger("crawler-cli")

FLOW_MODES = ["search", "detail", "creator", "monitor", "login", "profile", "videos", "comments", "resolve"]
SERVICE_MODES = ["init-config", "serve", "worker"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kscrawler", description="快手视频 / 用户 / 评论采集")
    parser.add_argument("mode", choices=FLOW_MODES + SERVICE_MODES)
    parser.add_argument("--config", default="config.json", help="运行配置文件路径")
    parser.add_argument("--id", dest="target_id", default=None, help="profile/videos/comments/resolve 的目标 ID 或名称")
    parser.add_argument("--count", type=int, default=20, help="videos/comments 模式的最大数量")
    parser.add_argument("--sub-comments", action="store_true", help="展开二级评论")
    parser.add_argument("--cookies", default=None, help="已登录浏览器复制的 Cookie 字符串，优先于扫码登录")
    parser.add_argument("--log-level", default=settings.crawler_log_level)
    parser.add_argument("--log-dir", default=settings.crawler_log_dir)
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser


def _print_report(report: RunReport) -> None:
    print(json.dumps(report.model_dump(mode="json"), ensure_ascii=False, indent=2))


async def _run_flow(args: argparse.Namespace) -> int:
    overrides = {"cookies": args.cookies} if args.cookies else None
    config = load_crawler_config(args.config, overrides=overrides)
    if args.mode == "monitor" and config.schedule_enabled:
        runs = await run_monitor_schedule(config)
        logger.info("Monitor schedule stopped after %d runs", runs)
        return 0
    report = await run_flow(
        args.mode,
        config,
        target_id=args.target_id,
        count=args.count,
        expand_sub_comments=args.sub_comments,
    )
    _print_report(report)
    if args.mode == "login" and not report.logged_in:
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_dir)

    if args.mode == "init-config":
        path = write_default_config(args.config)
        print(f"默认配置已写入: {path}")
        return 0
    if args.mode == "serve":
        uvicorn.run("kscrawler.main:app", host=args.host, port=args.port)
        return 0
    if args.mode == "worker":
        asyncio.run(run_worker())
        return 0

    try:
        return asyncio.run(_run_flow(args))
    except CrawlerConfigError as exc:
        print(f"配置错误: {exc}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"配置文件无效: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
