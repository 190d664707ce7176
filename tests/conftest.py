import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from kscrawler.client import KuaishouClient
from kscrawler.credentials import CredentialStore
from kscrawler.registry import SessionHandle, SessionRegistry
from kscrawler.risk_control import RiskController
from kscrawler.session_acquirer import Session, SessionAcquirer
from kscrawler.session_store import SessionStore
from kscrawler.storage import OutputLayout


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def no_delay_risk(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RiskController(
        user_agent_pool="test-agent",
        pre_delay_ms=(0, 0),
        post_delay_ms=(0, 0),
        page_delay_ms=(0, 0),
        blocked_cooldown_s=(0, 0),
        sleep=_sleep,
    )


class GraphQLStub:
    """MockTransport handler answering by operationName, one queued reply per call."""

    def __init__(self) -> None:
        self.routes: Dict[str, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def on(self, key: str, *replies: Any) -> "GraphQLStub":
        self.routes.setdefault(key, []).extend(replies)
        return self

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["operation"] == operation]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            key = f"GET {request.url.path}"
            variables: Dict[str, Any] = {}
        else:
            body = json.loads(request.content)
            key = body["operationName"]
            variables = body["variables"]
        self.calls.append({"operation": key, "variables": variables, "headers": dict(request.headers), "request": request})
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(200, json={"data": None})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            reply = reply(variables)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)


@pytest.fixture
def graphql():
    return GraphQLStub()


@pytest.fixture
def make_client(no_delay_risk):
    def _make(handler: Callable[[httpx.Request], Any], cookies: Optional[Dict[str, str]] = None) -> KuaishouClient:
        return KuaishouClient(
            CredentialStore(cookies or {}),
            user_agent="test-agent",
            risk=no_delay_risk,
            transport=httpx.MockTransport(handler),
        )

    return _make


@pytest.fixture
def layout(tmp_path) -> OutputLayout:
    return OutputLayout(tmp_path / "data", tmp_path / "temp")


@pytest.fixture
def registry_with(no_delay_risk):
    """Registry pre-loaded with a browserless handle around the given client."""

    def _make(client: KuaishouClient, logged_in: bool = False) -> SessionRegistry:
        registry = SessionRegistry(risk=no_delay_risk)
        registry._handle = SessionHandle(acquirer=None, session=Session(logged_in=logged_in), client=client)
        return registry

    return _make


def feed(video_id: str, likes: Any = 10, timestamp: int = 1_700_000_000_000, author: str = "u1") -> Dict[str, Any]:
    return {
        "type": 1,
        "author": {"id": author, "name": f"name-{author}"},
        "photo": {
            "id": video_id,
            "caption": f"caption {video_id}",
            "coverUrl": f"https://cdn/{video_id}.jpg",
            "photoUrl": f"https://cdn/{video_id}.mp4",
            "likeCount": likes,
            "viewCount": "1.2万",
            "commentCount": 3,
            "duration": 15000,
            "timestamp": timestamp,
        },
    }


def comment(comment_id: str, subs: int = 0, sub_cursor: str = "") -> Dict[str, Any]:
    return {
        "commentId": comment_id,
        "authorId": "a1",
        "authorName": "someone",
        "content": f"text {comment_id}",
        "timestamp": 1_700_000_000_000,
        "likedCount": "1,024",
        "subCommentCount": subs,
        "subCommentsPcursor": sub_cursor,
        "subComments": [
            {"commentId": f"{comment_id}-s{i}", "authorId": "a2", "content": "reply", "timestamp": 1} for i in range(min(subs, 2))
        ],
    }


# -- fake Playwright objects --------------------------------------------------


class FakeElement:
    def __init__(self, src: str = "", shot: bytes = b"", on_click: Optional[Callable[[], None]] = None) -> None:
        self.src = src
        self.shot = shot
        self.on_click = on_click
        self.clicks = 0

    async def click(self, **_: Any) -> None:
        self.clicks += 1
        if self.on_click:
            self.on_click()

    async def get_attribute(self, name: str) -> Optional[str]:
        return self.src if name == "src" else None

    async def screenshot(self, path: Optional[str] = None, **_: Any) -> bytes:
        if path:
            Path(path).write_bytes(self.shot)
        return self.shot

    async def bounding_box(self) -> Optional[Dict[str, float]]:
        return None


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    async def count(self) -> int:
        self.page.locator_checks.append(self.selector)
        return 1 if self.selector in self.page.selectors else 0


class FakeMouse:
    async def move(self, *_: Any, **__: Any) -> None:
        return None

    async def click(self, *_: Any, **__: Any) -> None:
        return None


class FakePage:
    def __init__(
        self,
        selectors: Optional[Dict[str, Any]] = None,
        url: str = "https://www.kuaishou.com/",
        content: str = "<html></html>",
        redirects: Optional[Dict[str, str]] = None,
    ) -> None:
        self.selectors: Dict[str, Any] = dict(selectors or {})
        self.url = url
        self._content = content
        self.redirects = dict(redirects or {})
        self.goto_calls: List[str] = []
        self.locator_checks: List[str] = []
        self.screenshots: List[str] = []
        self.mouse = FakeMouse()
        self.closed = False
        self.fail_close = False

    async def query_selector(self, selector: str) -> Any:
        return self.selectors.get(selector)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def goto(self, url: str, **_: Any) -> None:
        self.goto_calls.append(url)
        self.url = self.redirects.get(url, url)

    async def content(self) -> str:
        return self._content

    async def evaluate(self, *_: Any) -> None:
        return None

    async def wait_for_selector(self, selector: str, **_: Any) -> Any:
        if selector not in self.selectors:
            raise TimeoutError(selector)
        return self.selectors[selector]

    async def screenshot(self, path: Optional[str] = None, **_: Any) -> bytes:
        if path:
            Path(path).write_bytes(b"\x89PNG")
            self.screenshots.append(path)
        return b"\x89PNG"

    async def reload(self, **_: Any) -> None:
        return None

    async def close(self) -> None:
        if self.fail_close:
            raise RuntimeError("page already gone")
        self.closed = True


class FakeContext:
    def __init__(self, cookies: Optional[List[Dict[str, Any]]] = None, login_after: Optional[int] = None) -> None:
        self._cookies = list(cookies or [])
        self.login_after = login_after
        self.cookie_reads = 0
        self.added: List[Dict[str, Any]] = []
        self.closed = False
        self.browser = None

    async def cookies(self) -> List[Dict[str, Any]]:
        self.cookie_reads += 1
        if self.login_after is not None and self.cookie_reads >= self.login_after:
            if not any(c["name"] == "passToken" for c in self._cookies):
                self._cookies.append({"name": "passToken", "value": "tok", "domain": ".kuaishou.com", "path": "/"})
        return list(self._cookies)

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.added.extend(cookies)
        self._cookies.extend(cookies)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_acquirer(tmp_path, clock):
    def _make(page: Optional[FakePage] = None, context: Optional[FakeContext] = None) -> SessionAcquirer:
        acquirer = SessionAcquirer(
            store=SessionStore(tmp_path / "cookies.json"),
            temp_dir=str(tmp_path / "temp"),
            browser_data_dir=str(tmp_path / "browser_data"),
            sleep=clock.sleep,
            clock=clock,
        )
        acquirer.page = page
        acquirer.context = context
        return acquirer

    return _make
