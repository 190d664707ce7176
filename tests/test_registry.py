import asyncio

import pytest

from kscrawler.models import CrawlerConfig
from kscrawler.registry import SessionRegistry
from kscrawler.session_acquirer import Session


class FakeAcquirer:
    instances = []

    def __init__(self, client_factory):
        self.client_factory = client_factory
        self.opened = 0
        self.closed = 0
        self.session = Session(cookies={"passToken": "first"}, logged_in=True)
        self.profile_dir = None
        FakeAcquirer.instances.append(self)

    async def open(self, config):
        self.opened += 1
        await asyncio.sleep(0)
        return self.session

    def build_client(self, risk=None):
        return self.client_factory(self.session.cookies)

    async def harvest_cookies(self):
        self.session.cookies = {"passToken": "second"}
        return dict(self.session.cookies)

    async def close(self):
        self.closed += 1


@pytest.fixture
def registry(graphql, make_client, no_delay_risk):
    FakeAcquirer.instances = []
    return SessionRegistry(lambda: FakeAcquirer(lambda cookies: make_client(graphql, cookies)), risk=no_delay_risk)


@pytest.mark.unit
class Describe_SessionRegistry:
    async def test_should_open_one_session_for_concurrent_callers(self, registry):
        """并发获取只打开一个会话"""
        (first, created_a), (second, created_b) = await asyncio.gather(
            registry.acquire(CrawlerConfig()),
            registry.acquire(CrawlerConfig()),
        )
        assert first is second
        assert sorted([created_a, created_b]) == [False, True]
        assert len(FakeAcquirer.instances) == 1
        assert FakeAcquirer.instances[0].opened == 1

    async def test_should_push_fresh_cookies_into_client(self, registry):
        """刷新后客户端使用新 cookie"""
        handle, _ = await registry.acquire(CrawlerConfig())
        await handle.refresh_client()
        assert handle.client.credentials.as_dict() == {"passToken": "second"}

    async def test_should_close_and_forget_session(self, registry):
        """关闭后下一次获取新建会话"""
        await registry.acquire(CrawlerConfig())
        await registry.close()
        assert registry.current is None
        assert FakeAcquirer.instances[0].closed == 1
        _, created = await registry.acquire(CrawlerConfig())
        assert created
        await registry.close()
        await registry.close()
        assert FakeAcquirer.instances[1].closed == 1
