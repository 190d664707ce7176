from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


CrawlMode = Literal[
    "search",
    "detail",
    "creator",
    "monitor",
    "login",
    "profile",
    "videos",
    "comments",
    "resolve",
]
JobStatus = Literal["queued", "running", "completed", "failed"]
CountValue = Union[int, float, str]


class ProxyInfo(BaseModel):
    ip: str = ""
    port: Union[int, str] = ""
    username: str = ""
    password: str = ""

    def to_proxy_url(self) -> str:
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.ip}:{self.port}"
        return f"http://{self.ip}:{self.port}"

    def playwright_proxy(self) -> Dict[str, str]:
        proxy = {"server": f"http://{self.ip}:{self.port}"}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


class VideoFilter(BaseModel):
    days_limit: int = 0
    min_likes: int = 0
    save_video_url: bool = True


class CrawlerConfig(BaseModel):
    """Run configuration as read from config.json."""

    model_config = ConfigDict(extra="ignore")

    crawler_type: Literal["search", "detail", "creator"] = "search"
    search_keywords: List[str] = Field(default_factory=list)
    video_id_list: List[str] = Field(default_factory=list)
    creator_id_list: List[str] = Field(default_factory=list)
    max_pages: int = 3
    max_comment_pages: int = 3
    get_comments: bool = True
    get_video_detail: bool = True
    headless: bool = True
    use_proxy: bool = False
    ip_proxy_info: ProxyInfo = Field(default_factory=ProxyInfo)
    schedule_enabled: bool = False
    schedule_interval: int = 60  # minutes
    monitor_user_list: List[str] = Field(default_factory=list)
    video_filter: VideoFilter = Field(default_factory=VideoFilter)
    login_required: bool = False
    login_timeout: int = 60  # seconds
    cookies: str = ""  # "k=v; k2=v2" pasted from a logged-in browser

    def proxy(self) -> Optional[ProxyInfo]:
        if self.use_proxy and self.ip_proxy_info.ip:
            return self.ip_proxy_info
        return None


class VideoRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    caption: str = ""
    cover_url: str = ""
    play_url: str = ""
    like_count: CountValue = 0
    comment_count: CountValue = 0
    view_count: CountValue = 0
    duration_ms: int = 0
    timestamp_ms: int = 0
    author_id: str = ""
    author_name: str = ""
    source_keyword: Optional[str] = None


class CommentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str = ""
    author_name: str = ""
    content: str = ""
    timestamp_ms: int = 0
    like_count: CountValue = 0
    reply_count: int = 0
    sub_comments: List["CommentRecord"] = Field(default_factory=list)
    sub_comments_cursor: str = ""


class UserProfile(BaseModel):
    id: str
    eid: str = ""
    name: str = ""
    gender: str = ""
    avatar_url: str = ""
    description: str = ""
    follower_count: CountValue = 0
    following_count: CountValue = 0
    video_count: CountValue = 0
    liked_count: CountValue = 0
    is_following: bool = False
    is_live_now: bool = False


class RunReport(BaseModel):
    mode: str
    counts: Dict[str, int] = Field(default_factory=dict)
    output_paths: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    degraded: bool = False
    logged_in: bool = False

    def add_count(self, kind: str, amount: int) -> None:
        self.counts[kind] = self.counts.get(kind, 0) + int(amount)


class EnqueueJobRequest(BaseModel):
    job_id: Optional[str] = None
    mode: CrawlMode
    target_id: Optional[str] = None
    count: int = 20
    config: Dict[str, Any] = Field(default_factory=dict)


class StartLoginRequest(BaseModel):
    timeout_s: int = 60


class LoginStatusResponse(BaseModel):
    status: Literal["idle", "pending", "logged_in", "timeout", "failed"]
    qr_path: str = ""
    qr_payload: str = ""
    error: Optional[str] = None
