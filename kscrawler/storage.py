from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel

from kscrawler.config import settings
from kscrawler.models import CommentRecord

logger = logging.getLogger("crawler-storage")

PathLike = Union[str, Path]


def to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, dict):
        return {str(k): to_jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    return data


def save_json(path: PathLike, data: Any) -> Path:
    """Overwrite ``path`` with ``data`` as JSON.

    The payload is written to a temp file in the same directory and moved into
    place with ``os.replace``; readers see the old file or the new one.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(to_jsonable(data), ensure_ascii=False, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(body)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
    return target


def load_json(path: PathLike, default: Any = None) -> Any:
    target = Path(path)
    if not target.exists():
        return default
    try:
        return json.loads(target.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable JSON at %s: %s", target, exc)
        return default


def safe_segment(value: str) -> str:
    cleaned = re.sub(r"[\\/:*?\"<>|\s]+", "_", str(value or "").strip())
    return cleaned.strip("._") or "_"


class OutputLayout:
    """Directory conventions for everything a run persists."""

    def __init__(self, root: Optional[PathLike] = None, temp_root: Optional[PathLike] = None) -> None:
        self.root = Path(root or settings.crawler_data_dir)
        self.temp_root = Path(temp_root or settings.crawler_temp_dir)

    def search_dir(self, keyword: str) -> Path:
        return self.root / "search" / safe_segment(keyword)

    def search_debug_path(self, keyword: str) -> Path:
        return self.temp_root / "search_debug" / f"{safe_segment(keyword)}_sample.json"

    def detail_dir(self) -> Path:
        return self.root / "detail"

    def creator_dir(self, creator_id: str) -> Path:
        return self.root / "creator" / safe_segment(creator_id)

    def user_profile_path(self, user_id: str) -> Path:
        return self.root / "user_profiles" / f"{safe_segment(user_id)}.json"

    def user_videos_path(self, user_id: str) -> Path:
        return self.root / "user_videos" / f"{safe_segment(user_id)}.json"

    def video_comments_path(self, video_id: str) -> Path:
        return self.root / "video_comments" / f"{safe_segment(video_id)}.json"

    def monitor_root(self) -> Path:
        return self.root / "monitor"

    def monitor_dir(self, user_id: str, day: Optional[datetime] = None) -> Path:
        stamp = (day or datetime.now()).strftime("%Y-%m-%d")
        return self.monitor_root() / safe_segment(user_id) / stamp


def write_comment_file(directory: PathLike, video_id: str, comments: Iterable[CommentRecord]) -> Path:
    rows: List[CommentRecord] = list(comments)
    return save_json(
        Path(directory) / f"{safe_segment(video_id)}.json",
        {"video_id": video_id, "comment_count": len(rows), "comments": rows},
    )
