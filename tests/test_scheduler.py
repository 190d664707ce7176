import asyncio
import os
import time

import pytest

from kscrawler import scheduler
from kscrawler.config import CrawlerConfigError
from kscrawler.models import CrawlerConfig, RunReport
from kscrawler.scheduler import cleanup_stale_artifacts, run_monitor_schedule

DAY_S = 86400


class ClosingRegistry:
    current = None

    def __init__(self):
        self.closed = 0

    async def close(self):
        self.closed += 1


def age(path, days):
    stamp = time.time() - days * DAY_S
    os.utime(path, (stamp, stamp))


@pytest.mark.unit
class Describe_cleanup_stale_artifacts:
    def test_should_remove_only_old_entries(self, tmp_path):
        """只删除超过保留期的条目"""
        old_dir = tmp_path / "kuaishou_user_data_dir_1"
        old_dir.mkdir()
        (old_dir / "Cookies").write_text("x")
        old_file = tmp_path / "security_verification_1.png"
        old_file.write_bytes(b"png")
        fresh = tmp_path / "kuaishou_qrcode.png"
        fresh.write_bytes(b"png")
        age(old_dir, 10)
        age(old_file, 10)

        removed = cleanup_stale_artifacts([tmp_path], max_age_days=7)
        assert sorted(p.name for p in removed) == ["kuaishou_user_data_dir_1", "security_verification_1.png"]
        assert [p.name for p in tmp_path.iterdir()] == ["kuaishou_qrcode.png"]

    def test_should_keep_live_profile(self, tmp_path):
        """正在使用的浏览器目录不会被删除"""
        live = tmp_path / "kuaishou_user_data_dir_2"
        live.mkdir()
        age(live, 30)
        assert cleanup_stale_artifacts([tmp_path], max_age_days=7, keep=[live]) == []
        assert live.exists()

    def test_should_skip_missing_roots(self, tmp_path):
        """不存在的目录被忽略"""
        assert cleanup_stale_artifacts([tmp_path / "nope"], max_age_days=1) == []

    def test_should_age_dated_monitor_runs_per_day(self, tmp_path):
        """监控目录按日期子目录过期，用户目录保留"""
        user_dir = tmp_path / "monitor" / "u1"
        old_day = user_dir / "2026-01-01"
        fresh_day = user_dir / "2026-10-19"
        old_day.mkdir(parents=True)
        (old_day / "videos.json").write_text("[]")
        age(old_day, 30)
        fresh_day.mkdir()

        removed = cleanup_stale_artifacts([], dated_roots=[tmp_path / "monitor"], max_age_days=7)
        assert removed == [old_day]
        assert not old_day.exists()
        assert fresh_day.exists()
        assert user_dir.exists()


@pytest.mark.unit
class Describe_run_monitor_schedule:
    async def test_should_run_once_when_schedule_disabled(self, monkeypatch):
        """未开启定时时只运行一次并关闭会话"""
        calls = []

        async def _fake_run_flow(mode, config, **kwargs):
            calls.append((mode, kwargs["keep_session"]))
            return RunReport(mode=mode)

        monkeypatch.setattr(scheduler, "run_flow", _fake_run_flow)
        registry = ClosingRegistry()
        runs = await run_monitor_schedule(CrawlerConfig(monitor_user_list=["u1"]), registry=registry)
        assert runs == 1
        assert calls == [("monitor", True)]
        assert registry.closed == 1

    async def test_should_survive_failed_run_until_stopped(self, monkeypatch, tmp_path):
        """单次运行失败不终止定时任务"""
        monkeypatch.chdir(tmp_path)
        stop = asyncio.Event()

        async def _fake_run_flow(mode, config, **kwargs):
            stop.set()
            raise RuntimeError("network down")

        monkeypatch.setattr(scheduler, "run_flow", _fake_run_flow)
        registry = ClosingRegistry()
        config = CrawlerConfig(monitor_user_list=["u1"], schedule_enabled=True)
        runs = await run_monitor_schedule(config, registry=registry, stop_event=stop)
        assert runs == 1
        assert registry.closed == 1

    async def test_should_propagate_config_errors(self, monkeypatch):
        """配置错误直接抛出且仍然关闭会话"""

        async def _fake_run_flow(mode, config, **kwargs):
            raise CrawlerConfigError("monitor_user_list is empty, nothing to crawl")

        monkeypatch.setattr(scheduler, "run_flow", _fake_run_flow)
        registry = ClosingRegistry()
        with pytest.raises(CrawlerConfigError):
            await run_monitor_schedule(CrawlerConfig(), registry=registry)
        assert registry.closed == 1
