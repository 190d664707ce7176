"""Outcome of every API call and pagination step.

``None`` is never used to mean "nothing came back": an empty feed, a soft
block and a transport failure are distinct members of ``FetchResult``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Empty:
    reason: str = ""


@dataclass(frozen=True)
class Blocked:
    retry_after_s: float = 0.0


@dataclass(frozen=True)
class Error:
    cause: str


FetchResult = Union[Ok[T], Empty, Blocked, Error]


def describe(result: object) -> str:
    if isinstance(result, Ok):
        return "ok"
    if isinstance(result, Empty):
        return f"empty:{result.reason}" if result.reason else "empty"
    if isinstance(result, Blocked):
        return f"blocked:{result.retry_after_s:.0f}s"
    if isinstance(result, Error):
        return f"error:{result.cause}"
    return f"unknown:{type(result).__name__}"
