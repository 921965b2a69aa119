"""Registry of running accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stealth_relay.capture.pipeline import CapturePipeline
    from stealth_relay.core.router import AccountRouter
    from stealth_relay.messenger.base import ChatSession


@dataclass
class AccountRuntime:
    account_id: str
    session: ChatSession
    router: AccountRouter
    pipeline: CapturePipeline | None = None


class AccountRegistry:
    """Tracks every started account's session, router and pipeline."""

    def __init__(self) -> None:
        self._accounts: dict[str, AccountRuntime] = {}

    def register(self, runtime: AccountRuntime) -> None:
        self._accounts[runtime.account_id] = runtime

    def get(self, account_id: str) -> AccountRuntime | None:
        return self._accounts.get(account_id)

    def remove(self, account_id: str) -> AccountRuntime | None:
        return self._accounts.pop(account_id, None)

    def all(self) -> list[AccountRuntime]:
        return list(self._accounts.values())

    def ids(self) -> list[str]:
        return list(self._accounts.keys())
