"""ActivityBroker: at most one editing surface holds each role at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class Role(str, Enum):
    EDITOR = "editor"
    DRAGGING = "dragging"


@dataclass
class _Holder:
    instance_id: str
    on_preempt: Callable[[], None] | None = None


class ActivityBroker:
    """
    Registry passed to each editing surface at construction.

    ``acquire`` hands a role to a new instance and calls the previous
    holder's ``on_preempt`` callback, so a grid that loses the editor role
    can disable itself.
    """

    def __init__(self) -> None:
        self._holders: dict[Role, _Holder] = {}

    def acquire(
        self,
        role: Role,
        instance_id: str,
        on_preempt: Callable[[], None] | None = None,
    ) -> str | None:
        """Give *role* to *instance_id*; returns the displaced holder's id."""
        previous = self._holders.get(role)
        self._holders[role] = _Holder(instance_id, on_preempt)
        if previous is None or previous.instance_id == instance_id:
            return None

        logger.debug("%s preempted %s for role %s", instance_id, previous.instance_id, role.value)
        if previous.on_preempt is not None:
            previous.on_preempt()
        return previous.instance_id

    def release(self, instance_id: str, role: Role | None = None) -> None:
        """Drop every role (or just *role*) held by *instance_id*."""
        for held_role in list(self._holders):
            if role is not None and held_role is not role:
                continue
            if self._holders[held_role].instance_id == instance_id:
                del self._holders[held_role]

    def holder(self, role: Role) -> str | None:
        held = self._holders.get(role)
        return held.instance_id if held else None

    def is_active(self, role: Role, instance_id: str) -> bool:
        return self.holder(role) == instance_id
