"""Typed success/failure values for fallible collaborator calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, TypeVar

from chapterlens.search.exceptions import ProviderUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureReason(StrEnum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    ERROR = "error"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a failure reason, never both."""

    value: T | None = None
    failure: FailureReason | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, reason: FailureReason, detail: str = "") -> Outcome[T]:
        return cls(failure=reason, detail=detail)


async def guarded(
    call: Awaitable[T],
    *,
    label: str,
    timeout: float | None = None,
) -> Outcome[T]:
    """Await a collaborator call, converting timeouts and exceptions to an Outcome.

    Cancellation of the caller still propagates.
    """
    try:
        value = await asyncio.wait_for(call, timeout=timeout)
    except ProviderUnavailableError as e:
        logger.warning("%s unavailable: %s", label, e)
        return Outcome.failed(FailureReason.UNAVAILABLE, str(e))
    except TimeoutError:
        logger.warning("%s timed out after %ss", label, timeout)
        return Outcome.failed(FailureReason.TIMEOUT, f"timed out after {timeout}s")
    except (ValueError, TypeError, KeyError) as e:
        logger.warning("%s returned malformed data: %s", label, e)
        return Outcome.failed(FailureReason.MALFORMED, str(e))
    except Exception as e:
        logger.warning("%s failed", label, exc_info=True)
        return Outcome.failed(FailureReason.ERROR, str(e))
    return Outcome.success(value)
