from __future__ import annotations

from abc import ABC, abstractmethod

from botfleet.core.bot_config import BotConfig, VirtualBalance
from botfleet.core.types import BotStatusSnapshot, DecisionRecord


class BotStore(ABC):
    """
    Durable bot configuration plus the latest status snapshot of each bot.

    Configuration is written by the admin side at any time; the worker reads it and only writes
    back the virtual ledger of dry-run bots.
    """

    @abstractmethod
    def init_schema(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_bots(self) -> list[BotConfig]:
        """Bots whose stored config validates; invalid rows are skipped."""
        raise NotImplementedError

    @abstractmethod
    def list_bot_ids(self) -> list[str]:
        """Every stored bot id, valid config or not."""
        raise NotImplementedError

    @abstractmethod
    def get_bot(self, bot_id: str) -> BotConfig | None:
        raise NotImplementedError

    @abstractmethod
    def save_bot(self, bot: BotConfig) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_bot(self, bot_id: str) -> bool:
        """Remove the bot together with its snapshot and decision history."""
        raise NotImplementedError

    @abstractmethod
    def update_virtual_balance(self, bot_id: str, vb: VirtualBalance) -> None:
        raise NotImplementedError

    @abstractmethod
    def upsert_snapshot(self, snapshot: BotStatusSnapshot) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_snapshot(self, bot_id: str) -> BotStatusSnapshot | None:
        raise NotImplementedError

    @abstractmethod
    def list_snapshots(self) -> list[BotStatusSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def record_decision(self, bot_id: str, rec: DecisionRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_decisions(self, bot_id: str, limit: int = 100) -> list[DecisionRecord]:
        raise NotImplementedError
