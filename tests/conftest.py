from __future__ import annotations

from typing import Any, Callable

import pytest

from fakes import FakeClock, FakeSession
from stealth_relay.capture.files import TempFileStore
from stealth_relay.capture.forwarder import VaultForwarder
from stealth_relay.capture.pipeline import CapturePipeline
from stealth_relay.config import StealthConfig


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_pipeline(tmp_path, clock, session) -> Callable[..., CapturePipeline]:
    """Build a pipeline on the shared fake session, clock and a temp directory."""

    def _make(
        vault: str | None = "+91 99999 00000",
        ledger=None,
        mask_identifiers: bool = True,
        **stealth: Any,
    ) -> CapturePipeline:
        config = StealthConfig(mask_identifiers=mask_identifiers, **stealth)
        files = TempFileStore(tmp_path / "temp", "acct")
        forwarder = VaultForwarder(
            session,
            vault,
            mask_identifiers=mask_identifiers,
            timezone_name="UTC",
            send_timeout_seconds=1.0,
        )
        return CapturePipeline(
            "acct",
            config,
            session,
            files,
            forwarder,
            ledger=ledger,
            download_timeout_seconds=1.0,
            clock=clock,
        )

    return _make
