from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

from kscrawler.client import KuaishouClient
from kscrawler.config import settings
from kscrawler.credentials import SESSION_INDICATOR_COOKIES, CredentialStore, cookie_map, parse_cookie_string
from kscrawler.models import CrawlerConfig, ProxyInfo
from kscrawler.normalizer import extract_user_id_from_html, extract_user_id_from_url
from kscrawler.qr import decode_data_url, decode_qr_image, render_terminal_qr
from kscrawler.risk_control import RiskController
from kscrawler.session_store import DEFAULT_COOKIE_DOMAIN, SessionStore, normalize_cookies, session_store

logger = logging.getLogger("crawler-session")

LOGIN_BUTTON_SELECTOR = 'p:has-text("登录")'
AVATAR_SELECTOR = ".user-avatar"
QR_IMAGE_SELECTOR = ".qrcode-img img"
AUTH_ONLY_PATH = "/settings/profile"
CHALLENGE_TEXT = "请完成安全验证"
SLIDER_SELECTOR = ".slider-move-bar, .drag-button"
PUZZLE_SELECTOR = ".puzzle-container"
SAFE_CLICK_SELECTOR = ".logo-wrap"
AUTHOR_CARD_SELECTOR = ".container.card-item"
# name text, avatar, then the card body
AUTHOR_CLICK_TARGETS = (".detail-user-name", ".avatar-img", AUTHOR_CARD_SELECTOR)
NETWORK_ERROR_MARKERS = ("ERR_", "net::", "网络错误", "网络不给力", "无法访问此网站")

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-notifications",
    "--disable-popup-blocking",
]

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['zh-CN', 'zh', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
if (originalQuery) {
  window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
      ? Promise.resolve({state: Notification.permission})
      : originalQuery(parameters)
  );
}
"""


class SessionState(str, enum.Enum):
    INIT = "init"
    PAGE_LOADED = "page_loaded"
    CHALLENGE_CHECK = "challenge_check"
    LOGGED_IN = "logged_in"
    NEEDS_LOGIN = "needs_login"
    QR_PRESENTED = "qr_presented"
    POLLING = "polling"
    TIMEOUT = "timeout"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class Session:
    cookies: Dict[str, str] = field(default_factory=dict)
    user_agent: str = ""
    proxy: Optional[ProxyInfo] = None
    logged_in: bool = False
    degraded: bool = False


@dataclass
class QrChallenge:
    path: str
    payload: Optional[str] = None


class SessionAcquirer:
    """Owns one browser profile and turns it into cookies for the API client.

    Every step degrades instead of raising: a failed launch or a challenge
    that never clears still leaves a Session that can build a client.
    """

    def __init__(
        self,
        *,
        store: SessionStore = session_store,
        base_url: str = settings.crawler_base_url,
        temp_dir: str = settings.crawler_temp_dir,
        browser_data_dir: str = settings.crawler_browser_data_dir,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.temp_dir = Path(temp_dir)
        self.browser_data_dir = Path(browser_data_dir)
        self._sleep = sleep
        self._clock = clock
        self.state = SessionState.INIT
        self.session = Session()
        self.playwright: Optional[Playwright] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.profile_dir: Optional[Path] = None
        self.last_qr: Optional[QrChallenge] = None

    @property
    def has_browser(self) -> bool:
        return self.context is not None and self.page is not None

    async def open(self, config: CrawlerConfig) -> Session:
        proxy = config.proxy()
        self.session = Session(
            user_agent=RiskController.from_settings().user_agents.sample(),
            proxy=proxy,
        )
        saved = self.store.load_cookies()
        # saved cookies still feed the client when the browser never comes up
        self.session.cookies = cookie_map(saved)

        try:
            await self._launch(headless=config.headless, proxy=proxy, saved_cookies=saved)
        except Exception as exc:  # noqa: BLE001
            logger.error("Browser launch failed, continuing without a browser: %s", exc)
            self.session.degraded = True
            self.session.logged_in = CredentialStore(self.session.cookies).is_logged_in()
            if config.cookies and not self.session.logged_in:
                await self.login_by_cookie_string(config.cookies)
            return self.session

        if await self._load_home():
            self.state = SessionState.PAGE_LOADED
        else:
            self.session.degraded = True

        await self._simulate_human()

        self.state = SessionState.CHALLENGE_CHECK
        if not await self._wait_out_challenge():
            self.session.degraded = True

        logged_in = await self.check_logged_in()
        self.state = SessionState.LOGGED_IN if logged_in else SessionState.NEEDS_LOGIN
        if not logged_in and config.cookies:
            logged_in = await self.login_by_cookie_string(config.cookies)
        if not logged_in and config.login_required:
            logged_in = await self.login_by_qr(config.login_timeout)

        await self.harvest_cookies()
        self.session.logged_in = logged_in
        if logged_in:
            self.state = SessionState.READY
        logger.info(
            "Session ready: logged_in=%s degraded=%s cookies=%d",
            self.session.logged_in,
            self.session.degraded,
            len(self.session.cookies),
        )
        return self.session

    async def _launch(
        self,
        *,
        headless: bool,
        proxy: Optional[ProxyInfo],
        saved_cookies: List[Dict[str, Any]],
    ) -> None:
        self.browser_data_dir.mkdir(parents=True, exist_ok=True)
        # fresh directory per run; two live contexts must never share a profile
        self.profile_dir = self.browser_data_dir / f"kuaishou_user_data_dir_{int(time.time() * 1000)}"
        self.profile_dir.mkdir(parents=True, exist_ok=True)

        self.playwright = await async_playwright().start()
        options: Dict[str, Any] = {
            "headless": headless,
            "user_agent": self.session.user_agent,
            "viewport": {"width": random.randint(1280, 1380), "height": random.randint(800, 900)},
            "locale": "zh-CN",
            "timezone_id": "Asia/Shanghai",
            "ignore_https_errors": True,
            "bypass_csp": True,
            "color_scheme": "light",
            "args": BROWSER_ARGS,
        }
        if proxy is not None:
            options["proxy"] = proxy.playwright_proxy()
        self.context = await self.playwright.chromium.launch_persistent_context(str(self.profile_dir), **options)
        await self.context.add_init_script(STEALTH_INIT_SCRIPT)
        if saved_cookies:
            try:
                await self.context.add_cookies(saved_cookies)
                logger.info("Restored %d saved cookies into the browser", len(saved_cookies))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Saved cookies rejected by the browser: %s", exc)
        self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()
        logger.info("Browser launched with profile %s", self.profile_dir)

    async def _load_home(self) -> bool:
        if self.page is None:
            return False
        attempts = max(1, settings.crawler_home_load_retries)
        for attempt in range(1, attempts + 1):
            try:
                await self.page.goto(self.base_url, wait_until="domcontentloaded", timeout=60000)
                content = await self.page.content()
                if not any(marker in content for marker in NETWORK_ERROR_MARKERS):
                    return True
                logger.warning("Home page shows a network error (attempt %d/%d)", attempt, attempts)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Home page load failed (attempt %d/%d): %s", attempt, attempts, str(exc)[:200])
            await self._sleep(random.uniform(2, 4))
        logger.error("Home page did not load after %d attempts, continuing degraded", attempts)
        return False

    async def _simulate_human(self) -> None:
        if self.page is None:
            return
        try:
            for _ in range(random.randint(2, 4)):
                await self.page.evaluate("(y) => window.scrollBy(0, y)", random.randint(100, 400))
                await self._sleep(random.uniform(0.8, 2.0))
            await self.page.mouse.move(random.randint(100, 600), random.randint(100, 400), steps=5)
            await self._sleep(random.uniform(0.5, 1.5))
            safe_area = await self.page.query_selector(SAFE_CLICK_SELECTOR)
            if safe_area:
                box = await safe_area.bounding_box()
                if box:
                    await self.page.mouse.click(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Human-like jitter skipped: %s", exc)

    async def _challenge_visible(self) -> bool:
        if self.page is None:
            return False
        try:
            return await self.page.locator(f"text={CHALLENGE_TEXT}").count() > 0
        except Exception:  # noqa: BLE001
            return False

    async def classify_challenge(self) -> str:
        if self.page is None:
            return "unknown"
        try:
            if await self.page.locator(SLIDER_SELECTOR).count() > 0:
                return "slider"
            if await self.page.locator(PUZZLE_SELECTOR).count() > 0:
                return "puzzle"
        except Exception:  # noqa: BLE001
            pass
        return "unknown"

    async def _wait_out_challenge(self) -> bool:
        """False when a challenge was still on screen at the deadline."""
        if not await self._challenge_visible():
            return True
        kind = await self.classify_challenge()
        logger.warning("Security challenge detected (%s); solve it in the browser window", kind)
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            shot = self.temp_dir / f"security_verification_{int(time.time() * 1000)}.png"
            await self.page.screenshot(path=str(shot))
            logger.warning("Challenge screenshot saved to %s", shot)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Challenge screenshot failed: %s", exc)

        deadline = self._clock() + settings.crawler_challenge_wait_s
        poll_s = max(1, settings.crawler_challenge_poll_s)
        while self._clock() < deadline:
            await self._sleep(poll_s)
            if not await self._challenge_visible():
                logger.info("Challenge cleared")
                return True
        logger.error("Challenge still present after %ss, continuing degraded", settings.crawler_challenge_wait_s)
        return False

    async def _browser_cookies(self) -> List[Dict[str, Any]]:
        if self.context is None:
            return []
        try:
            return list(await self.context.cookies())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Reading browser cookies failed: %s", exc)
            return []

    async def _has_session_cookie(self) -> bool:
        values = cookie_map(await self._browser_cookies())
        return any(values.get(name) for name in SESSION_INDICATOR_COOKIES)

    async def check_logged_in(self) -> bool:
        """Login button → avatar → session cookie → authenticated route."""
        if self.page is None:
            return CredentialStore(self.session.cookies).is_logged_in()
        try:
            if await self.page.query_selector(LOGIN_BUTTON_SELECTOR):
                return False
            if await self.page.query_selector(AVATAR_SELECTOR):
                return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Login selector check failed: %s", exc)
        if await self._has_session_cookie():
            return True
        return await self._auth_route_reachable()

    async def _auth_route_reachable(self) -> bool:
        if self.page is None:
            return False
        previous = self.page.url
        reachable = False
        try:
            await self.page.goto(f"{self.base_url}{AUTH_ONLY_PATH}", wait_until="domcontentloaded", timeout=30000)
            await self._sleep(2)
            reachable = AUTH_ONLY_PATH in self.page.url
        except Exception as exc:  # noqa: BLE001
            logger.info("Authenticated route probe failed: %s", exc)
        try:
            if previous:
                await self.page.goto(previous, wait_until="domcontentloaded", timeout=30000)
        except Exception:  # noqa: BLE001
            pass
        return reachable

    async def present_qr(self) -> Optional[QrChallenge]:
        """Open the login dialog and capture the QR. None when no QR appears."""
        if self.page is None:
            logger.error("QR login needs a browser page")
            return None
        try:
            button = await self.page.query_selector(LOGIN_BUTTON_SELECTOR)
            if button:
                await button.click()
                await self._sleep(2)
            else:
                await self.page.goto(f"{self.base_url}/login", wait_until="domcontentloaded", timeout=30000)
            await self.page.wait_for_selector(QR_IMAGE_SELECTOR, timeout=settings.crawler_qr_wait_s * 1000)
            element = await self.page.query_selector(QR_IMAGE_SELECTOR)
            if element is None:
                return None
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            qr_path = self.temp_dir / "kuaishou_qrcode.png"
            image = decode_data_url(await element.get_attribute("src") or "")
            if image:
                qr_path.write_bytes(image)
            else:
                image = await element.screenshot(path=str(qr_path))
        except Exception as exc:  # noqa: BLE001
            logger.error("QR code did not appear: %s", str(exc)[:200])
            return None

        payload = decode_qr_image(image)
        challenge = QrChallenge(path=str(qr_path), payload=payload)
        self.last_qr = challenge
        self.state = SessionState.QR_PRESENTED
        if payload:
            logger.info("Scan this QR code with the Kuaishou app:\n%s", render_terminal_qr(payload))
        else:
            logger.warning("Could not decode the QR image; open %s and scan it manually", qr_path)
        return challenge

    async def wait_for_login(self, timeout_s: float) -> bool:
        """Poll browser cookies once a second until a session cookie shows up."""
        self.state = SessionState.POLLING
        deadline = self._clock() + max(0.0, float(timeout_s))
        while True:
            if await self._has_session_cookie():
                logger.info("Login detected")
                self.state = SessionState.LOGGED_IN
                await self.harvest_cookies()
                self.session.logged_in = True
                self.store.save_cookies(await self._browser_cookies())
                return True
            if self._clock() >= deadline:
                break
            await self._sleep(1)
        logger.warning("QR login timed out after %ss", timeout_s)
        self.state = SessionState.TIMEOUT
        return False

    async def login_by_qr(self, timeout_s: float = 60) -> bool:
        if await self.present_qr() is None:
            return False
        return await self.wait_for_login(timeout_s)

    async def login_by_cookie_string(self, raw: str) -> bool:
        pairs = parse_cookie_string(raw)
        if not pairs:
            logger.error("Cookie string is empty")
            return False
        if self.context is None:
            self.session.cookies = {**self.session.cookies, **pairs}
            self.session.logged_in = CredentialStore(self.session.cookies).is_logged_in()
            return self.session.logged_in
        try:
            await self.context.add_cookies(
                normalize_cookies([{"name": k, "value": v} for k, v in pairs.items()], DEFAULT_COOKIE_DOMAIN)
            )
            if self.page is not None:
                await self.page.reload(wait_until="domcontentloaded")
        except Exception as exc:  # noqa: BLE001
            logger.error("Cookie login failed: %s", exc)
            return False
        logged_in = await self.check_logged_in()
        await self.harvest_cookies()
        self.session.logged_in = logged_in
        if logged_in:
            self.store.save_cookies(await self._browser_cookies())
        return logged_in

    async def harvest_cookies(self) -> Dict[str, str]:
        cookies = await self._browser_cookies()
        if cookies:
            self.session.cookies = cookie_map(cookies)
            logger.info("Harvested %d cookies: %s", len(self.session.cookies), ", ".join(sorted(self.session.cookies)))
        return dict(self.session.cookies)

    def build_client(self, risk: Optional[RiskController] = None) -> KuaishouClient:
        """Always returns a client, unauthenticated if nothing was harvested."""
        proxy_url = self.session.proxy.to_proxy_url() if self.session.proxy else None
        return KuaishouClient(
            CredentialStore(self.session.cookies),
            user_agent=self.session.user_agent or None,
            proxy_url=proxy_url,
            risk=risk,
        )

    async def resolve_via_author_search(self, handle: str, timeout_s: float = 10) -> Optional[str]:
        """Search the author UI for ``handle`` and read the id off the opened profile."""
        if self.page is None or self.context is None:
            return None
        url = f"{self.base_url}/search/author?searchKey={quote(handle)}"
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=30000)
            await self.page.wait_for_selector(AUTHOR_CARD_SELECTOR, timeout=int(timeout_s * 1000))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Author search for %r showed no results: %s", handle, str(exc)[:160])
            return None

        for selector in AUTHOR_CLICK_TARGETS:
            target = await self.page.query_selector(f"{AUTHOR_CARD_SELECTOR} {selector}")
            if target is None and selector == AUTHOR_CARD_SELECTOR:
                target = await self.page.query_selector(selector)
            if target is None:
                continue
            user_id = await self._follow_profile_click(target, timeout_s)
            if user_id:
                logger.info("Resolved %r to user id %s via %s", handle, user_id, selector)
                return user_id
        return None

    async def _follow_profile_click(self, target: Any, timeout_s: float) -> str:
        opened: Optional[Page] = None
        try:
            async with self.context.expect_page(timeout=timeout_s * 1000) as page_info:
                await target.click()
            opened = await page_info.value
            await opened.wait_for_load_state("domcontentloaded", timeout=timeout_s * 1000)
            source = opened
        except Exception:  # noqa: BLE001
            # some cards navigate in place
            source = self.page
        try:
            user_id = extract_user_id_from_url(source.url) if "/profile/" in source.url else ""
            if not user_id:
                user_id = extract_user_id_from_html(await source.content())
            return user_id
        except Exception as exc:  # noqa: BLE001
            logger.debug("Reading profile id after click failed: %s", exc)
            return ""
        finally:
            if opened is not None:
                try:
                    await opened.close()
                except Exception:  # noqa: BLE001
                    pass

    async def close(self) -> None:
        """Page, context, browser, driver. Never raises."""
        if self.context is not None:
            cookies = await self._browser_cookies()
            if cookies:
                try:
                    self.store.save_cookies(cookies)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Saving cookies at close failed: %s", exc)
        browser = None
        if self.context is not None:
            try:
                browser = self.context.browser
            except Exception:  # noqa: BLE001
                browser = None
        for label, closer in (
            ("page", self.page.close if self.page is not None else None),
            ("context", self.context.close if self.context is not None else None),
            ("browser", browser.close if browser is not None else None),
            ("playwright", self.playwright.stop if self.playwright is not None else None),
        ):
            if closer is None:
                continue
            try:
                await asyncio.wait_for(closer(), timeout=5)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Closing %s failed: %s", label, exc)
        self.page = None
        self.context = None
        self.playwright = None
        self.state = SessionState.CLOSED
