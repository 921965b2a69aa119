"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

import importlib
from typing import Callable, Optional

from stealth_relay.capture.files import TempFileStore
from stealth_relay.capture.forwarder import VaultForwarder
from stealth_relay.capture.pipeline import CapturePipeline
from stealth_relay.config import AccountConfig, AppConfig
from stealth_relay.core.account_registry import AccountRegistry, AccountRuntime
from stealth_relay.core.router import AccountRouter, MessageResponder
from stealth_relay.log import bind_account, get_logger
from stealth_relay.messenger.base import ChatSession
from stealth_relay.services.cleanup import CleanupService
from stealth_relay.storage.database import Database
from stealth_relay.storage.ledger import ForwardLedger

logger = get_logger(__name__)

SessionFactory = Callable[[AccountConfig], ChatSession]


def import_session_class(path: str) -> type[ChatSession]:
    """Resolve ``"package.module:ClassName"`` to a ChatSession subclass."""
    module_name, sep, class_name = path.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Session must be given as 'module:ClassName', got {path!r}")
    module = importlib.import_module(module_name)
    cls = getattr(module, class_name, None)
    if not isinstance(cls, type) or not issubclass(cls, ChatSession):
        raise ValueError(f"{path} is not a ChatSession implementation")
    return cls


def default_session_factory(account: AccountConfig) -> ChatSession:
    if not account.session:
        raise ValueError(f"Account '{account.id}' has no 'session' configured")
    cls = import_session_class(account.session)
    return cls(account.id, account.session_options)


class StealthRelayApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        session_factory: Optional[SessionFactory] = None,
        responders: Optional[list[MessageResponder]] = None,
    ):
        self.config = config
        self.db: Database | None = None
        self.ledger: ForwardLedger | None = None
        if config.storage.ledger_enabled:
            self.db = Database(config.storage.ledger_path)
            self.ledger = ForwardLedger(self.db)
        self.cleanup = CleanupService(
            config.cleanup,
            ledger=self.ledger,
            ledger_retention_days=config.storage.ledger_retention_days,
        )
        self.registry = AccountRegistry()
        self._session_factory = session_factory or default_session_factory
        self._responders = list(responders or [])

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Ledger
        if self.db is not None:
            await self.db.initialize()

        # 2. Accounts
        for account in self.config.enabled_accounts():
            try:
                runtime = self.build_account(account)
                runtime.router.attach()
                await runtime.session.start()
                self.registry.register(runtime)
                if runtime.pipeline is not None:
                    self.cleanup.register(runtime.pipeline)
                logger.info(
                    "account_started",
                    account_id=account.id,
                    stealth=runtime.pipeline is not None,
                    vault_configured=bool(account.vault_destination),
                )
            except Exception as e:
                logger.error("account_start_failed", account_id=account.id, error=str(e))

        # 3. Cleanup
        await self.cleanup.start()

        logger.info("stealth_relay_started", account_count=len(self.registry.ids()))

    def build_account(self, account: AccountConfig) -> AccountRuntime:
        """Create the session, pipeline and router for one account (not started)."""
        session = self._session_factory(account)
        log = bind_account(get_logger("stealth_relay.account"), account.id)

        pipeline: CapturePipeline | None = None
        if account.stealth.enabled:
            files = TempFileStore(self.config.storage.temp_root, account.id)
            files.ensure()
            forwarder = VaultForwarder(
                session,
                account.vault_destination,
                mask_identifiers=account.stealth.mask_identifiers,
                timezone_name=self.config.forwarder.timezone,
                send_timeout_seconds=self.config.forwarder.send_timeout_seconds,
                logger=log,
            )
            pipeline = CapturePipeline(
                account.id,
                account.stealth,
                session,
                files,
                forwarder,
                ledger=self.ledger,
                download_timeout_seconds=self.config.forwarder.download_timeout_seconds,
                logger=log,
            )

        router = AccountRouter(
            account.id,
            session,
            pipeline=pipeline,
            responders=self._responders,
            logger=log,
        )
        return AccountRuntime(account_id=account.id, session=session, router=router, pipeline=pipeline)

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for runtime in self.registry.all():
            try:
                await runtime.session.stop()
            except Exception as e:
                logger.error("account_stop_error", account_id=runtime.account_id, error=str(e))
            self.cleanup.unregister(runtime.account_id)

        await self.cleanup.stop()
        if self.db is not None:
            await self.db.close()
        logger.info("stealth_relay_stopped")

    def stats(self) -> dict[str, dict[str, int]]:
        result: dict[str, dict[str, int]] = {}
        for runtime in self.registry.all():
            entry = {
                "messages_processed": runtime.router.messages_processed,
                "routing_errors": runtime.router.errors,
            }
            if runtime.pipeline is not None:
                entry.update(runtime.pipeline.snapshot())
            result[runtime.account_id] = entry
        return result
