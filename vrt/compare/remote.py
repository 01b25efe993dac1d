"""Helpers shared by the remote review adapters."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from vrt.models.artifact import CaptureTarget, Family

logger = logging.getLogger(__name__)

# First class as ".class", else the lower-cased tag name.
_SCOPE_SCRIPT = (
    "return arguments[0].getAttribute('class') "
    "? '.' + arguments[0].getAttribute('class').split(' ')[0] "
    ": arguments[0].tagName.toLowerCase();"
)
_SCOPE_FUNCTION = (
    "el => el.getAttribute('class') "
    "? '.' + el.getAttribute('class').split(' ')[0] "
    ": el.tagName.toLowerCase()"
)


async def derive_scope(target: CaptureTarget) -> str | None:
    """Turn an element scope into a CSS selector the review service understands."""
    scope = target.scope
    if scope is None:
        return None
    if isinstance(scope, str):
        return scope

    if target.family is Family.SESSION:
        selector = await asyncio.to_thread(target.handle.execute_script, _SCOPE_SCRIPT, scope)
    else:
        selector = await scope.evaluate(_SCOPE_FUNCTION)
    logger.debug("Derived scope selector %r for %s capture", selector, target.family.value)
    return selector


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
