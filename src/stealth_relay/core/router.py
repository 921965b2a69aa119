"""Per-account event router: resolves who/where, then hands off to the pipeline and responders."""

from __future__ import annotations

import re
from typing import Optional, Protocol

from stealth_relay.capture.extractor import revoked_message_id
from stealth_relay.capture.models import MessageContext
from stealth_relay.capture.pipeline import CapturePipeline
from stealth_relay.core.identity import phone_from_jid
from stealth_relay.core.types import STATUS_GROUP_CONTEXT
from stealth_relay.log import bind_account, get_logger
from stealth_relay.messenger.base import ChatSession
from stealth_relay.messenger.models import DeleteNotice, InboundMessage, MessageKey

_DIGITS_ONLY = re.compile(r"^[0-9]+$")


class MessageResponder(Protocol):
    """On-demand behaviour (e.g. content search) that answers messages."""

    async def respond(
        self, session: ChatSession, message: InboundMessage, context: MessageContext
    ) -> None:
        ...


class AccountRouter:
    """Routes one account's session events. Exceptions stop here."""

    def __init__(
        self,
        account_id: str,
        session: ChatSession,
        pipeline: Optional[CapturePipeline] = None,
        responders: Optional[list[MessageResponder]] = None,
        logger=None,
    ):
        self.account_id = account_id
        self._session = session
        self._pipeline = pipeline
        self._responders = list(responders or [])
        self._log = logger or bind_account(get_logger(__name__), account_id)
        self.messages_processed = 0
        self.errors = 0

    def attach(self) -> None:
        self._session.on_message(self.on_message)
        self._session.on_delete(self.on_delete)

    def add_responder(self, responder: MessageResponder) -> None:
        self._responders.append(responder)

    async def on_message(self, message: InboundMessage) -> None:
        self.messages_processed += 1
        try:
            revoked = revoked_message_id(message.message)
            if revoked is not None:
                await self.on_delete(
                    DeleteNotice(key=MessageKey(id=revoked, remote_jid=message.key.remote_jid))
                )
                return

            if message.key.from_me:
                return

            context = await self.resolve_context(message)

            if self._pipeline is not None:
                await self._pipeline.handle_message(message, context)

            for responder in self._responders:
                await responder.respond(self._session, message, context)
        except Exception:
            self.errors += 1
            self._log.error("message_routing_failed", message_id=message.key.id, exc_info=True)

    async def on_delete(self, notice: DeleteNotice) -> None:
        if self._pipeline is None:
            return
        self._log.info("message_deleted", message_id=notice.key.id)
        try:
            await self._pipeline.handle_delete(notice)
        except Exception:
            self.errors += 1
            self._log.error("delete_routing_failed", message_id=notice.key.id, exc_info=True)

    async def resolve_context(self, message: InboundMessage) -> MessageContext:
        key = message.key
        group_context: Optional[str] = None

        if key.is_status:
            sender_id = key.participant or key.remote_jid
            group_context = STATUS_GROUP_CONTEXT
        elif key.is_group:
            sender_id = key.participant or key.remote_jid
            group_context = await self._group_name(key.remote_jid)
        else:
            sender_id = key.remote_jid

        return MessageContext(
            sender_name=self._sender_name(sender_id, message.push_name),
            sender_id=sender_id,
            group_context=group_context,
            is_status=key.is_status,
        )

    async def _group_name(self, jid: str) -> str:
        try:
            info = await self._session.get_group_info(jid)
        except Exception as e:
            self._log.warning("group_info_failed", jid=jid, error=str(e))
            return "Unknown Group"
        return info.display_name or "Unknown Group"

    @staticmethod
    def _sender_name(sender_id: str, push_name: str) -> str:
        phone = phone_from_jid(sender_id)
        if "@lid" in sender_id:
            return f"Linked Contact ({phone[-4:]})"
        name = (push_name or "").strip()
        if name and "@" not in name and name != "status" and not _DIGITS_ONLY.match(name):
            return name
        return phone or "Unknown"
