from __future__ import annotations

from abc import ABC, abstractmethod

from kscrawler.models import RunReport


class BaseCrawler(ABC):
    """Capability contract every platform adapter implements."""

    platform: str

    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def search(self) -> RunReport:
        raise NotImplementedError

    @abstractmethod
    async def get_specified_videos(self) -> RunReport:
        raise NotImplementedError

    @abstractmethod
    async def get_creators_and_videos(self) -> RunReport:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError
