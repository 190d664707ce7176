from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from kscrawler.config import settings
from kscrawler.credentials import SESSION_INDICATOR_COOKIES, cookie_map
from kscrawler.storage import load_json, save_json

logger = logging.getLogger("crawler-session")

DEFAULT_COOKIE_DOMAIN = ".kuaishou.com"


def normalize_cookies(cookies: List[Dict[str, Any]], domain: str = DEFAULT_COOKIE_DOMAIN) -> List[Dict[str, Any]]:
    """Shape raw cookie dicts into what ``BrowserContext.add_cookies`` accepts."""
    normalized: List[Dict[str, Any]] = []
    for raw in cookies:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("name", "")).strip()
        value = str(raw.get("value", "")).strip()
        if not name:
            continue
        item: Dict[str, Any] = {
            "name": name,
            "value": value,
            "domain": str(raw.get("domain") or domain),
            "path": str(raw.get("path") or "/"),
        }
        if raw.get("expires") is not None:
            try:
                item["expires"] = float(raw["expires"])
            except (TypeError, ValueError):
                pass
        if "httpOnly" in raw:
            item["httpOnly"] = bool(raw.get("httpOnly"))
        if "secure" in raw:
            item["secure"] = bool(raw.get("secure"))
        if raw.get("sameSite") in ("Strict", "Lax", "None"):
            item["sameSite"] = raw["sameSite"]
        normalized.append(item)
    return normalized


class SessionStore:
    """cookies.json on disk: an array of browser cookie objects."""

    def __init__(self, cookies_file: Union[str, Path, None] = None) -> None:
        self.cookies_file = Path(cookies_file or settings.crawler_cookies_file)

    @staticmethod
    def validate_cookie_bundle(cookies: List[Dict[str, Any]]) -> Tuple[bool, str]:
        if not cookies:
            return False, "empty_cookies"
        values = cookie_map(cookies)
        if not any(values.get(name) for name in SESSION_INDICATOR_COOKIES):
            return False, "missing_required_cookies"
        return True, ""

    def load_cookies(self) -> List[Dict[str, Any]]:
        raw = load_json(self.cookies_file, default=[])
        if not isinstance(raw, list):
            logger.warning("Ignoring %s: expected a cookie array", self.cookies_file)
            return []
        cookies = normalize_cookies(raw)
        if cookies:
            logger.info("Loaded %d saved cookies from %s", len(cookies), self.cookies_file)
        return cookies

    def save_cookies(self, cookies: List[Dict[str, Any]]) -> Optional[Path]:
        if not cookies:
            return None
        ok, reason = self.validate_cookie_bundle(cookies)
        path = save_json(self.cookies_file, cookies)
        logger.info(
            "Saved %d cookies to %s (session=%s%s)",
            len(cookies),
            path,
            "yes" if ok else "no",
            f", {reason}" if reason else "",
        )
        return path

    def clear(self) -> bool:
        try:
            self.cookies_file.unlink()
            return True
        except FileNotFoundError:
            return False


session_store = SessionStore()
