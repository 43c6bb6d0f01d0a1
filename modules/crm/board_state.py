"""Persistent ``{guild, board} -> message id`` map backed by a Key/Value tab."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from shared.sheets import async_core

log = logging.getLogger("crm.board_state")

BOARD_STATE_HEADERS = ("Key", "Value")


def state_key(guild_id: int, board: str) -> str:
    return f"BOARD_{board.strip().upper().replace('-', '_')}_{int(guild_id)}"


class BoardStateStore:
    """Board message ids that survive restarts.

    The whole tab is read once and then served from memory; ``set`` and
    ``clear`` write through to the sheet under a lock.
    """

    def __init__(self, sheet_id: str, tab: str) -> None:
        self._sheet_id = sheet_id
        self._tab = tab
        self._lock = asyncio.Lock()
        self._state: Optional[Dict[str, str]] = None

    async def _load(self) -> Dict[str, str]:
        if self._state is None:
            raw = await async_core.afetch_config_dict(self._sheet_id, self._tab)
            self._state = {key.strip().upper(): value for key, value in raw.items()}
        return self._state

    async def ensure_tab(self) -> str:
        return await async_core.aensure_worksheet(
            self._sheet_id, self._tab, list(BOARD_STATE_HEADERS)
        )

    async def get(self, guild_id: int, board: str) -> Optional[int]:
        async with self._lock:
            state = await self._load()
        raw = (state.get(state_key(guild_id, board)) or "").strip()
        return int(raw) if raw.isdigit() else None

    async def set(self, guild_id: int, board: str, message_id: int) -> None:
        await self._write(state_key(guild_id, board), str(int(message_id)))

    async def clear(self, guild_id: int, board: str) -> None:
        await self._write(state_key(guild_id, board), "")

    async def _write(self, key: str, value: str) -> None:
        async with self._lock:
            state = await self._load()
            if state.get(key, "") == value:
                return
            await async_core.aupsert_row(
                self._sheet_id,
                self._tab,
                {"Key": key, "Value": value},
                key_columns=["Key"],
            )
            state[key] = value
        log.debug("board state updated", extra={"key": key, "value": value or "-"})

    def reset(self) -> None:
        """Drop the in-memory copy; the next read goes back to the sheet."""

        self._state = None


__all__ = ["BOARD_STATE_HEADERS", "BoardStateStore", "state_key"]
