"""Timeout and error wrapping for calls into external collaborators."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .exceptions import CadastreEngineError, UpstreamTimeoutError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_upstream(call: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await ``awaitable`` with a deadline.

    Timeouts become ``UpstreamTimeoutError`` and any other exception becomes
    ``UpstreamUnavailableError``, both naming ``call``. Engine errors raised by
    the collaborator (e.g. an unknown role) pass through. Cancellation of the
    caller propagates into the awaited call unchanged.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except CadastreEngineError:
        raise
    except asyncio.TimeoutError:
        logger.warning("Upstream call %s timed out after %ss", call, timeout)
        raise UpstreamTimeoutError(call, timeout) from None
    except Exception as e:
        logger.warning("Upstream call %s failed: %s", call, e)
        raise UpstreamUnavailableError(call, e) from e
