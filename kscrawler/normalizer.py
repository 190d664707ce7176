from __future__ import annotations

import json
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from kscrawler.models import CommentRecord, UserProfile, VideoFilter, VideoRecord

T = TypeVar("T")

_TEN_THOUSAND_SUFFIXES = ("万", "w", "W")

PROFILE_URL_PATTERN = re.compile(r"/profile/([^?/#\s\"']+)")

# Tried in order against page HTML when the URL carries no profile id.
ID_PATTERNS = (
    re.compile(r"/profile/([A-Za-z0-9_\-]+)"),
    re.compile(r'"userId"\s*:\s*"([^"]+)"'),
    re.compile(r'"authorId"\s*:\s*"([^"]+)"'),
    re.compile(r'"id"\s*:\s*"([^"]+)"'),
)

INVALID_PROFILE_MARKERS = ("抱歉，页面不存在", "用户不存在", "not-found", "找不到此用户", "errorContent")
PROFILE_INFO_MARKERS = ('"userId"', "user-info", "detail-user-name", '"ownerCount"')

_APOLLO_STATE_PATTERN = re.compile(r"window\.__APOLLO_STATE__\s*=\s*(\{.*?\})\s*;?\s*\(function", re.S)


def normalize_count(value: Any) -> int:
    """Turn a platform count ("1.5万", "12,345", 87) into an int.

    Numbers pass through; anything unparseable becomes 0. The result is a
    number, so normalizing twice gives the same value.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    if not text:
        return 0
    if text.endswith(_TEN_THOUSAND_SUFFIXES):
        try:
            return int(round(float(text[:-1].strip().replace(",", "")) * 10000))
        except ValueError:
            return 0
    text = text.replace(",", "")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except ValueError:
        return 0


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def make_video_filter(video_filter: VideoFilter, now_ms: Optional[int] = None) -> Callable[[VideoRecord], bool]:
    """Build the item predicate for the date window and like threshold."""
    now = int(time.time() * 1000) if now_ms is None else int(now_ms)
    since_ms = now - video_filter.days_limit * 86_400_000 if video_filter.days_limit > 0 else None
    min_likes = max(0, int(video_filter.min_likes))

    def _accept(video: VideoRecord) -> bool:
        if since_ms is not None and video.timestamp_ms < since_ms:
            return False
        if min_likes and normalize_count(video.like_count) < min_likes:
            return False
        return True

    return _accept


def parse_photo(photo: Dict[str, Any], author: Optional[Dict[str, Any]] = None, keyword: Optional[str] = None) -> Optional[VideoRecord]:
    if not isinstance(photo, dict) or not photo.get("id"):
        return None
    author = author if isinstance(author, dict) else {}
    like = photo.get("realLikeCount")
    if like in (None, "", 0):
        like = photo.get("likeCount", 0)
    return VideoRecord(
        id=_str(photo.get("id")),
        caption=_str(photo.get("caption")),
        cover_url=_str(photo.get("coverUrl")),
        play_url=_str(photo.get("photoUrl")),
        like_count=like if like is not None else 0,
        comment_count=photo.get("commentCount") or 0,
        view_count=photo.get("viewCount") or 0,
        duration_ms=_safe_int(photo.get("duration")),
        timestamp_ms=_safe_int(photo.get("timestamp")),
        author_id=_str(author.get("id")),
        author_name=_str(author.get("name")),
        source_keyword=keyword,
    )


def parse_feed_video(feed: Dict[str, Any], keyword: Optional[str] = None) -> Optional[VideoRecord]:
    if not isinstance(feed, dict):
        return None
    return parse_photo(feed.get("photo") or {}, feed.get("author"), keyword)


def parse_feeds(feeds: Any, keyword: Optional[str] = None) -> List[VideoRecord]:
    if not isinstance(feeds, list):
        return []
    rows = [parse_feed_video(feed, keyword) for feed in feeds]
    return [row for row in rows if row is not None]


def parse_photo_detail(data: Dict[str, Any]) -> Optional[VideoRecord]:
    detail = (data or {}).get("photoDetail") or {}
    return parse_photo(detail.get("photo") or {}, detail.get("user"))


def parse_comment(raw: Dict[str, Any], nested: bool = True) -> Optional[CommentRecord]:
    if not isinstance(raw, dict) or not raw.get("commentId"):
        return None
    subs: List[CommentRecord] = []
    if nested:
        # one level only
        for item in raw.get("subComments") or []:
            sub = parse_comment(item, nested=False)
            if sub is not None:
                subs.append(sub)
    like = raw.get("realLikedCount")
    if like in (None, ""):
        like = raw.get("likedCount", 0)
    return CommentRecord(
        id=_str(raw.get("commentId")),
        author_id=_str(raw.get("authorId")),
        author_name=_str(raw.get("authorName")),
        content=_str(raw.get("content")),
        timestamp_ms=_safe_int(raw.get("timestamp")),
        like_count=like if like is not None else 0,
        reply_count=_safe_int(raw.get("subCommentCount"), len(subs)),
        sub_comments=subs,
        sub_comments_cursor=_str(raw.get("subCommentsPcursor")) if nested else "",
    )


def parse_comments(rows: Any, nested: bool = True) -> List[CommentRecord]:
    if not isinstance(rows, list):
        return []
    parsed = [parse_comment(row, nested=nested) for row in rows]
    return [row for row in parsed if row is not None]


def parse_user_profile(data: Dict[str, Any], user_id: str = "") -> Optional[UserProfile]:
    root = (data or {}).get("userProfile") or {}
    profile = root.get("profile") or {}
    user = profile.get("user") or {}
    if not user.get("id") and not user.get("name"):
        return None
    counts = root.get("ownerCount") or {}
    return UserProfile(
        id=_str(user.get("id") or user_id),
        eid=_str(user.get("eid")),
        name=_str(user.get("name")),
        gender=_str(profile.get("gender")),
        avatar_url=_str(user.get("avatar")),
        follower_count=counts.get("fan") or 0,
        following_count=counts.get("follow") or 0,
        video_count=counts.get("photo") or 0,
        liked_count=counts.get("liked") or 0,
        is_following=bool(user.get("isFollowing")),
        is_live_now=bool(user.get("living")),
    )


def _vision_user_profile(node: Dict[str, Any], user_id: str) -> Optional[UserProfile]:
    profile = node.get("profile") or {}
    if not isinstance(profile, dict) or not (profile.get("user_id") or profile.get("user_name")):
        return None
    counts = node.get("ownerCount") or {}
    return UserProfile(
        id=_str(profile.get("user_id") or user_id),
        name=_str(profile.get("user_name")),
        gender=_str(profile.get("gender")),
        avatar_url=_str(profile.get("headurl")),
        description=_str(profile.get("user_text")),
        follower_count=counts.get("fan") or 0,
        following_count=counts.get("follow") or 0,
        video_count=counts.get("photo_public") or counts.get("photo") or 0,
        is_following=bool(node.get("isFollowing")),
    )


def parse_vision_profile(data: Dict[str, Any], user_id: str = "") -> Optional[UserProfile]:
    root = (data or {}).get("visionProfile") or {}
    node = root.get("userProfile") or {}
    if not isinstance(node, dict):
        return None
    return _vision_user_profile(node, user_id)


def walk_json_nodes(root: Any, max_nodes: int = 4000) -> List[Dict[str, Any]]:
    found: List[Dict[str, Any]] = []
    stack: List[Any] = [root]
    visited = 0
    while stack and visited < max_nodes:
        node = stack.pop()
        visited += 1
        if isinstance(node, dict):
            found.append(node)
            for v in node.values():
                if isinstance(v, (dict, list)):
                    stack.append(v)
        elif isinstance(node, list):
            for item in node:
                if isinstance(item, (dict, list)):
                    stack.append(item)
    return found


def profile_page_is_invalid(final_url: str, html: str) -> bool:
    if "/error" in final_url or "/notfound" in final_url:
        return True
    return any(marker in html for marker in INVALID_PROFILE_MARKERS)


def parse_profile_html(html: str, user_id: str, final_url: str = "") -> Optional[UserProfile]:
    """Best-effort profile from the public page HTML.

    Uses the embedded Apollo state when present; otherwise a page that carries
    both user markers and rendered user content yields an id-only profile.
    """
    if not html or profile_page_is_invalid(final_url, html):
        return None
    match = _APOLLO_STATE_PATTERN.search(html)
    if match:
        try:
            state = json.loads(match.group(1))
        except ValueError:
            state = None
        for node in walk_json_nodes(state):
            if "profile" in node and "ownerCount" in node:
                parsed = _vision_user_profile(node, user_id)
                if parsed is not None:
                    return parsed
    has_markers = any(marker in html for marker in PROFILE_INFO_MARKERS)
    has_content = (
        "detail-user-desc" in html
        or "profile-user-name" in html
        or ("user_name" in html and "headurl" in html)
    )
    if has_markers and has_content:
        return UserProfile(id=user_id)
    return None


def extract_user_id_from_url(value: str) -> str:
    """``https://www.kuaishou.com/profile/3x...?foo`` -> ``3x...``; plain ids pass through."""
    text = str(value or "").strip()
    match = PROFILE_URL_PATTERN.search(text)
    if match:
        return match.group(1)
    return text


def extract_user_id_from_html(html: str) -> str:
    for pattern in ID_PATTERNS:
        match = pattern.search(html or "")
        if match:
            return match.group(1)
    return ""


def dedupe_by_id(items: Iterable[T]) -> List[T]:
    seen = set()
    rows: List[T] = []
    for item in items:
        key = getattr(item, "id", None)
        if key in seen:
            continue
        seen.add(key)
        rows.append(item)
    return rows


def video_for_storage(video: VideoRecord, save_video_url: bool = True) -> Dict[str, Any]:
    row = video.model_dump(mode="json")
    if not save_video_url:
        row.pop("play_url", None)
    return row
