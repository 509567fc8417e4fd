"""In-flight turn tracking.

Each streaming turn runs in its own task with a cancellation token. The
registry lets the stop endpoint find the caller's turn by chat id and lets
shutdown cancel everything still running.
"""

from __future__ import annotations

import asyncio

from dataclasses import dataclass
from typing import Any

from core.cancellation import CancellationToken
from utils.logger import logger


@dataclass
class ActiveTurn:
    chat_id: str
    user_id: str
    task: asyncio.Task[Any]
    token: CancellationToken


class ActiveTurns:
    """Registry of running turns, at most one per chat.

    ``register`` and ``unregister`` are synchronous so they can run from a
    response generator's ``finally`` block.
    """

    def __init__(self) -> None:
        self._turns: dict[str, ActiveTurn] = {}
        self._shutting_down = False

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def register(self, turn: ActiveTurn) -> ActiveTurn | None:
        """Track ``turn``; returns the turn it replaced on the same chat, if any."""
        previous = self._turns.get(turn.chat_id)
        self._turns[turn.chat_id] = turn
        return previous if previous is not None and not previous.task.done() else None

    def unregister(self, turn: ActiveTurn) -> None:
        if self._turns.get(turn.chat_id) is turn:
            del self._turns[turn.chat_id]

    def get(self, chat_id: str) -> ActiveTurn | None:
        return self._turns.get(chat_id)

    async def stop(self, chat_id: str, user_id: str, reason: str = "Stopped by user") -> bool:
        """Cancel the caller's running turn on ``chat_id``. False if there is none."""
        turn = self._turns.get(chat_id)
        if turn is None or turn.user_id != user_id or turn.task.done():
            return False
        await turn.token.cancel(reason)
        logger.info(f"Stop requested for chat {chat_id}", chat_id=chat_id)
        return True

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Cancel every running turn and wait for their terminal frames."""
        self._shutting_down = True
        turns = [turn for turn in self._turns.values() if not turn.task.done()]
        if not turns:
            return
        logger.info(f"Cancelling {len(turns)} active turns for shutdown")
        for turn in turns:
            await turn.token.cancel("Server shutdown")
        _, pending = await asyncio.wait([turn.task for turn in turns], timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} turns did not finish within {timeout}s")

    def __len__(self) -> int:
        return sum(1 for turn in self._turns.values() if not turn.task.done())

    def get_stats(self) -> dict[str, Any]:
        return {"active_turns": len(self), "shutting_down": self._shutting_down}


__all__ = ["ActiveTurn", "ActiveTurns"]
