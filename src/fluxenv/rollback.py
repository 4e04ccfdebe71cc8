"""
Compensating actions accumulated while an environment is provisioned.

The chain grows as each subsystem starts; ``handle()`` hands the caller an
immutable snapshot that tears everything down in insertion order.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator

import structlog

from fluxenv.core.errors import RollbackError

logger = structlog.get_logger()

Action = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class CompensatingAction:
    """Releases one previously created external resource."""

    description: str
    action: Action

    async def __call__(self) -> None:
        await self.action()


class RollbackHandle:
    """Ordered compensating actions, invocable as a single unit.

    Safe to invoke with zero actions. Every action is attempted even when an
    earlier one fails.
    """

    def __init__(self, actions: tuple[CompensatingAction, ...] = ()) -> None:
        self._actions = actions

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[CompensatingAction]:
        return iter(self._actions)

    @property
    def descriptions(self) -> list[str]:
        return [action.description for action in self._actions]

    async def invoke(self) -> None:
        """Run every action in order.

        Raises:
            RollbackError: listing every action that failed
        """
        failures: list[BaseException] = []

        for action in self._actions:
            logger.info("rollback_action_started", action=action.description)
            try:
                await action()
            except Exception as exc:
                logger.error("rollback_action_failed", action=action.description, error=str(exc))
                failures.append(exc)
            else:
                logger.info("rollback_action_completed", action=action.description)

        if failures:
            raise RollbackError(failures, message="rollback failed")

    async def __call__(self) -> None:
        await self.invoke()


class RollbackChain:
    """Accumulates compensating actions from concurrent setup paths."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._actions: list[CompensatingAction] = []

    def add(self, action: Action, description: str) -> None:
        """Append a compensating action."""
        with self._lock:
            self._actions.append(CompensatingAction(description=description, action=action))

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def handle(self) -> RollbackHandle:
        """Snapshot the current actions as a handle."""
        with self._lock:
            return RollbackHandle(tuple(self._actions))

    async def invoke(self) -> None:
        await self.handle().invoke()
