from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

from pydantic_settings import BaseSettings, SettingsConfigDict

from kscrawler.models import CrawlerConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    crawler_base_url: str = "https://www.kuaishou.com"
    crawler_graphql_url: str = "https://www.kuaishou.com/graphql"
    crawler_http_timeout_s: int = 30
    crawler_accept_language: str = "zh-CN,zh;q=0.9"
    crawler_user_agent_pool: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36|"
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36|"
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    crawler_pre_delay_ms_min: int = 1000
    crawler_pre_delay_ms_max: int = 3000
    crawler_post_delay_ms_min: int = 500
    crawler_post_delay_ms_max: int = 2000
    crawler_page_delay_ms_min: int = 1000
    crawler_page_delay_ms_max: int = 3000
    crawler_blocked_cooldown_s_min: int = 30
    crawler_blocked_cooldown_s_max: int = 60

    crawler_empty_streak_cap: int = 3
    crawler_max_blocked_retries: int = 3
    crawler_concurrency_limit: int = 3

    crawler_playwright_headless: bool = False  # QR login needs a visible window by default
    crawler_home_load_retries: int = 3
    crawler_challenge_wait_s: int = 60
    crawler_challenge_poll_s: int = 5
    crawler_qr_wait_s: int = 30

    crawler_data_dir: str = "data"
    crawler_temp_dir: str = "temp"
    crawler_browser_data_dir: str = "browser_data"
    crawler_cookies_file: str = "data/cookies.json"

    crawler_retention_days: int = 7
    crawler_cleanup_interval_s: int = 86400

    crawler_api_token: str = ""
    crawler_redis_url: str = "redis://localhost:6379/0"
    crawler_job_queue_key: str = "kscrawler:jobs"
    crawler_inline_mode: bool = True

    crawler_log_level: str = "INFO"
    crawler_log_dir: str = "logs"


settings = Settings()


DEFAULT_CONFIG: Dict[str, Any] = {
    "crawler_type": "search",
    "search_keywords": ["搞笑", "宠物"],
    "video_id_list": [],
    "creator_id_list": [],
    "max_pages": 3,
    "max_comment_pages": 3,
    "get_comments": True,
    "get_video_detail": True,
    "headless": True,
    "use_proxy": False,
    "ip_proxy_info": {"ip": "", "port": "", "username": "", "password": ""},
    "schedule_enabled": False,
    "schedule_interval": 60,
    "monitor_user_list": [],
    "video_filter": {"days_limit": 0, "min_likes": 0, "save_video_url": True},
    "login_required": False,
    "login_timeout": 60,
    "cookies": "",
}


def load_crawler_config(path: Union[str, Path, None] = None, overrides: Dict[str, Any] | None = None) -> CrawlerConfig:
    """Read config.json into a validated CrawlerConfig.

    A missing file yields defaults. Malformed JSON or invalid values raise,
    since a broken config is an operator error rather than a crawl failure.
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            raw = json.loads(config_path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"config root must be an object: {config_path}")
    if overrides:
        raw = {**raw, **overrides}
    return CrawlerConfig.model_validate(raw)


def write_default_config(path: Union[str, Path]) -> Path:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(DEFAULT_CONFIG, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_path


class CrawlerConfigError(ValueError):
    """Invalid run configuration, e.g. an empty required id list."""
