from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional


# Any one of these marks an authenticated web session.
SESSION_INDICATOR_COOKIES = ("passToken", "userId", "kuaishou.web.cp.api_st")


def parse_cookie_string(raw: str) -> Dict[str, str]:
    cookies: Dict[str, str] = {}
    for item in str(raw or "").split(";"):
        name, sep, value = item.strip().partition("=")
        name = name.strip()
        value = value.strip()
        if sep and name and value:
            cookies[name] = value
    return cookies


def cookie_map(cookies: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    return {
        str(item.get("name", "")).strip(): str(item.get("value", "")).strip()
        for item in cookies
        if str(item.get("name", "")).strip()
    }


class CredentialStore:
    """Cookie key/value pairs handed from the browser to the HTTP client.

    Single writer, many readers: every mutation builds a fresh dict and swaps
    the reference, so a reader sees either the old or the new map, never a mix.
    """

    def __init__(self, cookies: Optional[Mapping[str, str]] = None) -> None:
        self._cookies: Dict[str, str] = dict(cookies or {})

    def set_from_browser_cookies(self, cookies: Iterable[Mapping[str, Any]]) -> None:
        self._cookies = cookie_map(cookies)

    def as_header_string(self) -> str:
        snapshot = self._cookies
        return "; ".join(f"{name}={value}" for name, value in snapshot.items())

    def has(self, key: str) -> bool:
        return bool(self._cookies.get(key))

    def is_logged_in(self) -> bool:
        return any(self.has(name) for name in SESSION_INDICATOR_COOKIES)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._cookies)

    def names(self) -> List[str]:
        return sorted(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)
