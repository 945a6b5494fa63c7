"""Permission gate for side-effecting tools.

Every guarded action is named "<capability>:<resource>", for example
"write:/home/me/notes.md" or "bash:ls -la". Rules are shell globs
("*" any run of characters, "?" exactly one) matched against the whole
string. A rule without ":" names a capability and matches any resource.

Evaluation order is fixed:
  1. deny rules
  2. allow rules
  3. persisted grants (globs) and approvals (exact actions)
  4. ask rules
  5. default: ask
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

from dadgpt.events import EventBus
from dadgpt.storage import JsonStore
from dadgpt.utils import generate_id

logger = logging.getLogger(__name__)

Decision = Literal["allow", "deny", "ask"]
Reply = Literal["once", "always", "reject"]

_GRANTS_PATH = ["permissions", "grants"]
# "always" replies, matched literally so "*" and "?" in a command stay plain text
_APPROVALS_PATH = ["permissions", "approved"]


class PermissionRuleset(BaseModel):
    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)
    ask: list[str] = Field(default_factory=list)


class PermissionRequest(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("perm"))
    capability: str
    resource: str
    session_id: str | None = None

    @property
    def pattern(self) -> str:
        return f"{self.capability}:{self.resource}"


AskCallback = Callable[[PermissionRequest], Awaitable[Reply]]


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def pattern_matches(pattern: str, capability: str, resource: str) -> bool:
    if ":" not in pattern:
        return _compile(pattern).fullmatch(capability) is not None
    return _compile(pattern).fullmatch(f"{capability}:{resource}") is not None


def _any_match(patterns: Iterable[str], capability: str, resource: str) -> bool:
    return any(pattern_matches(p, capability, resource) for p in patterns)


def evaluate_rules(
    capability: str,
    resource: str,
    ruleset: PermissionRuleset,
    grants: Iterable[str] = (),
    approved: Iterable[str] = (),
) -> Decision:
    """Decide allow/deny/ask for one action. No I/O.

    grants are globs; approved holds exact "<capability>:<resource>" strings.
    """
    if _any_match(ruleset.deny, capability, resource):
        return "deny"
    if _any_match(ruleset.allow, capability, resource):
        return "allow"
    if _any_match(grants, capability, resource) or f"{capability}:{resource}" in approved:
        return "allow"
    if _any_match(ruleset.ask, capability, resource):
        return "ask"
    return "ask"


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class PermissionGate:
    """Applies a ruleset plus persisted grants, resolving "ask" decisions.

    In a non-interactive run, or when no ask callback is wired, an "ask"
    decision resolves to deny instead of waiting for an answer.
    """

    def __init__(
        self,
        ruleset: PermissionRuleset,
        store: JsonStore,
        bus: EventBus,
        *,
        interactive: bool = False,
        ask_callback: AskCallback | None = None,
    ) -> None:
        self._ruleset = ruleset
        self._store = store
        self._bus = bus
        self._interactive = interactive
        self._ask_callback = ask_callback
        self._grants: list[str] | None = None
        self._approved: list[str] | None = None

    def set_ask_callback(self, callback: AskCallback | None, interactive: bool = True) -> None:
        self._ask_callback = callback
        self._interactive = interactive

    async def grants(self) -> list[str]:
        if self._grants is None:
            self._grants = list(await self._store.read(_GRANTS_PATH) or [])
        return self._grants

    async def approvals(self) -> list[str]:
        if self._approved is None:
            self._approved = list(await self._store.read(_APPROVALS_PATH) or [])
        return self._approved

    async def check(self, capability: str, resource: str) -> Decision:
        return evaluate_rules(
            capability, resource, self._ruleset, await self.grants(), await self.approvals()
        )

    async def grant(self, pattern: str) -> None:
        """Persist a grant so later checks for matching actions are allowed."""
        grants = await self.grants()
        if pattern in grants:
            return
        grants.append(pattern)
        await self._store.write(_GRANTS_PATH, grants)
        logger.info("Granted permission: %s", pattern)

    async def approve(self, capability: str, resource: str) -> None:
        """Persist approval of exactly this action; no glob expansion."""
        action = f"{capability}:{resource}"
        approved = await self.approvals()
        if action in approved:
            return
        approved.append(action)
        await self._store.write(_APPROVALS_PATH, approved)
        logger.info("Approved action: %s", action)

    async def authorize(self, capability: str, resource: str, session_id: str | None = None) -> bool:
        """True if the action may proceed, asking the user when required."""
        decision = await self.check(capability, resource)
        if decision == "allow":
            return True
        if decision == "deny":
            logger.info("Permission denied by rule: %s:%s", capability, resource)
            return False

        if not self._interactive or self._ask_callback is None:
            logger.info("Permission ask treated as deny (non-interactive): %s:%s", capability, resource)
            return False

        request = PermissionRequest(capability=capability, resource=resource, session_id=session_id)
        self._bus.publish("permission.asked", request.model_dump(), session_id)
        reply = await self._ask_callback(request)
        self._bus.publish(
            "permission.replied",
            {"id": request.id, "pattern": request.pattern, "reply": reply},
            session_id,
        )
        if reply == "always":
            await self.approve(capability, resource)
        return reply in ("once", "always")
