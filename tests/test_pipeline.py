from __future__ import annotations

import asyncio
from pathlib import Path

from fakes import GROUP_JID, HOUR_MS, SENDER_JID, inbound, media_object
from stealth_relay.capture.models import MessageContext
from stealth_relay.messenger.models import DeleteNotice, MessageKey
from stealth_relay.storage.database import Database
from stealth_relay.storage.ledger import ForwardLedger

DM = MessageContext(sender_name="Alice", sender_id=SENDER_JID)
STATUS = MessageContext(
    sender_name="Alice", sender_id=SENDER_JID, group_context="Status Update", is_status=True
)


def _delete(message_id: str) -> DeleteNotice:
    return DeleteNotice(key=MessageKey(id=message_id, remote_jid=SENDER_JID))


def _view_once(caption: str = "") -> dict:
    return {"viewOnceMessageV2": {"message": {"imageMessage": media_object(caption=caption)}}}


def test_text_round_trip(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    context = MessageContext(sender_name="Bob", sender_id="91xxxxxxxx@net", group_context=None)

    pipeline.cache_text("m1", "hello", context, timestamp=1_700_000_000)
    asyncio.run(pipeline.handle_delete(_delete("m1")))

    assert len(session.sent) == 1
    text = session.sent[0][1].text
    assert text.endswith("Content:\nhello")
    id_line = next(line for line in text.splitlines() if line.startswith("ID: "))
    assert id_line.endswith("xxxx")
    assert "91xxxxxxxx" not in text
    assert "m1" not in pipeline.text_cache
    assert pipeline.stats.deleted_recovered == 1


def test_text_recovery_failure_retains_record(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    session.fail_sends = True
    pipeline.cache_text("m1", "hello", DM, timestamp=1_700_000_000)

    asyncio.run(pipeline.handle_delete(_delete("m1")))

    assert "m1" in pipeline.text_cache
    assert pipeline.stats.forward_failures == 1


def test_text_cache_is_bounded(make_pipeline) -> None:
    pipeline = make_pipeline(max_text_cache=2)
    for i in range(5):
        pipeline.cache_text(f"m{i}", f"text {i}", DM, timestamp=0)
    assert pipeline.text_cache.keys() == ["m3", "m4"]


def test_media_recovery_success_deletes_file(make_pipeline, session) -> None:
    pipeline = make_pipeline()

    async def scenario() -> Path:
        await pipeline.handle_message(inbound("m2", {"imageMessage": media_object()}), DM)
        path = Path(pipeline.media_cache.get("m2").file_path)
        assert path.read_bytes() == b"\x00\x01\x02"
        await pipeline.handle_delete(_delete("m2"))
        return path

    path = asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.sent[0][1].caption.startswith("*Deleted IMAGE*")
    assert not path.exists()
    assert "m2" not in pipeline.media_cache


def test_media_recovery_failure_keeps_file(make_pipeline, session) -> None:
    pipeline = make_pipeline()

    async def scenario() -> Path:
        await pipeline.handle_message(inbound("m2", {"imageMessage": media_object()}), DM)
        session.fail_sends = True
        await pipeline.handle_delete(_delete("m2"))
        return Path(pipeline.media_cache.get("m2").file_path)

    path = asyncio.run(scenario())

    assert path.exists()
    assert path.stat().st_size == 3
    assert pipeline.stats.forward_failures == 1


def test_status_media_uses_status_prefix(make_pipeline) -> None:
    pipeline = make_pipeline()

    asyncio.run(
        pipeline.handle_message(
            inbound("s1", {"videoMessage": media_object(mimetype="video/mp4")}, remote_jid="status@broadcast"),
            STATUS,
        )
    )

    record = pipeline.media_cache.get("s1")
    assert record.is_status
    assert Path(record.file_path).name.startswith("status-")
    assert record.file_path.endswith(".mp4")


def test_view_once_forwarded_exactly_once(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    message = inbound("v1", _view_once(caption="only once"))

    async def scenario() -> None:
        await pipeline.handle_message(message, DM)
        await pipeline.handle_message(message, DM)
        await pipeline.handle_delete(_delete("v1"))

    asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.download_calls == ["v1"]
    caption = session.sent[0][1].caption
    assert caption.startswith("*View-Once IMAGE*")
    assert caption.endswith("Caption: only once")
    assert "v1" not in pipeline.media_cache
    assert pipeline.files.list_files() == []
    assert pipeline.stats.view_once_forwarded == 1


def test_view_once_forward_failure_is_recovered_on_delete(make_pipeline, session) -> None:
    pipeline = make_pipeline()

    async def scenario() -> None:
        session.fail_sends = True
        await pipeline.handle_message(inbound("v1", _view_once()), DM)
        assert "v1" in pipeline.media_cache
        session.fail_sends = False
        await pipeline.handle_delete(_delete("v1"))

    asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.sent[0][1].caption.startswith("*Deleted IMAGE*")
    assert "v1" not in pipeline.media_cache


def test_ephemeral_view_once_is_captured(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    payload = {"ephemeralMessage": {"message": _view_once()}}

    asyncio.run(pipeline.handle_message(inbound("v2", payload), DM))

    assert len(session.sent) == 1
    assert pipeline.stats.view_once_captured == 1


def test_view_once_ledger_survives_restart(tmp_path, make_pipeline, session) -> None:
    async def scenario() -> None:
        db = Database(str(tmp_path / "ledger.db"))
        await db.initialize()
        try:
            ledger = ForwardLedger(db)
            first = make_pipeline(ledger=ledger)
            await first.handle_message(inbound("v1", _view_once()), DM)

            restarted = make_pipeline(ledger=ledger)
            await restarted.handle_message(inbound("v1", _view_once()), DM)
            assert "v1" not in restarted.media_cache
        finally:
            await db.close()

    asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.download_calls == ["v1"]


def test_excluded_group_short_circuits_everything(make_pipeline, session) -> None:
    pipeline = make_pipeline(excluded_groups=["family"])
    context = MessageContext(sender_name="Mum", sender_id=SENDER_JID, group_context="Family Chat")

    async def scenario() -> None:
        await pipeline.handle_message(inbound("e1", {"conversation": "dinner"}, GROUP_JID), context)
        await pipeline.handle_message(inbound("e2", {"imageMessage": media_object()}, GROUP_JID), context)
        await pipeline.handle_message(inbound("e3", _view_once(), GROUP_JID), context)

    asyncio.run(scenario())

    assert session.download_calls == []
    assert session.sent == []
    assert len(pipeline.text_cache) == 0
    assert len(pipeline.media_cache) == 0
    assert pipeline.files.list_files() == []
    assert pipeline.stats.excluded == 3


def test_gate_prevents_download_and_keeps_caption(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    payload = {"imageMessage": media_object(caption="the plan", mediaKey=None)}

    async def scenario() -> None:
        await pipeline.handle_message(inbound("g1", payload), DM)
        await pipeline.handle_delete(_delete("g1"))

    asyncio.run(scenario())

    assert session.download_calls == []
    assert len(session.sent) == 1
    assert session.sent[0][1].text.endswith("Content:\nthe plan")


def test_download_failure_caches_nothing(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    session.fail_downloads = True

    asyncio.run(pipeline.handle_message(inbound("d1", {"imageMessage": media_object()}), DM))

    assert "d1" not in pipeline.media_cache
    assert pipeline.files.list_files() == []
    assert pipeline.stats.download_failures == 1


def test_own_messages_are_ignored(make_pipeline) -> None:
    pipeline = make_pipeline()
    asyncio.run(pipeline.handle_message(inbound("o1", {"conversation": "mine"}, from_me=True), DM))
    assert len(pipeline.text_cache) == 0


def test_delete_during_capture_is_deferred(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    session.download_gate = asyncio.Event()

    async def scenario() -> None:
        capture = asyncio.create_task(
            pipeline.handle_message(inbound("p1", {"imageMessage": media_object()}), DM)
        )
        while "p1" not in session.download_calls:
            await asyncio.sleep(0)
        await pipeline.handle_delete(_delete("p1"))
        assert session.sent == []
        session.download_gate.set()
        await capture

    asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.sent[0][1].caption.startswith("*Deleted IMAGE*")
    assert "p1" not in pipeline.media_cache


def test_unknown_delete_is_noop(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    asyncio.run(pipeline.handle_delete(_delete("never-seen")))
    assert session.sent == []
    assert pipeline.stats.errors == 0


def test_sweep_expires_status_media_and_its_file(make_pipeline, clock) -> None:
    pipeline = make_pipeline()

    async def scenario() -> None:
        await pipeline.handle_message(
            inbound("s1", {"imageMessage": media_object()}, remote_jid="status@broadcast"), STATUS
        )
        await pipeline.handle_message(inbound("m1", {"imageMessage": media_object()}), DM)

    asyncio.run(scenario())
    status_path = Path(pipeline.media_cache.get("s1").file_path)
    clock.advance(25 * HOUR_MS)

    assert pipeline.sweep() == (1, 0)
    assert not status_path.exists()
    assert "m1" in pipeline.media_cache
    assert pipeline.referenced_paths() == {pipeline.media_cache.get("m1").file_path}


def test_snapshot_reports_cache_sizes(make_pipeline) -> None:
    pipeline = make_pipeline()
    pipeline.cache_text("m1", "hello", DM, timestamp=0)

    snapshot = pipeline.snapshot()

    assert snapshot["text_cache_size"] == 1
    assert snapshot["media_cache_size"] == 0
    assert snapshot["text_cached"] == 1


def test_view_once_redelivery_after_delete_is_not_reforwarded(make_pipeline, session) -> None:
    pipeline = make_pipeline()
    message = inbound("v1", _view_once())

    async def scenario() -> None:
        await pipeline.handle_message(message, DM)
        await pipeline.handle_delete(_delete("v1"))
        await pipeline.handle_message(message, DM)

    asyncio.run(scenario())

    assert len(session.sent) == 1
    assert session.download_calls == ["v1"]
    assert "v1" not in pipeline.media_cache


def test_failed_write_clears_deferred_delete(make_pipeline, session, monkeypatch) -> None:
    pipeline = make_pipeline()
    session.download_gate = asyncio.Event()

    async def disk_full(capture_class, extension, data):
        raise OSError("disk full")

    monkeypatch.setattr(pipeline.files, "write", disk_full)

    async def scenario() -> None:
        capture = asyncio.create_task(
            pipeline.handle_message(inbound("p1", {"imageMessage": media_object()}), DM)
        )
        while "p1" not in session.download_calls:
            await asyncio.sleep(0)
        await pipeline.handle_delete(_delete("p1"))
        session.download_gate.set()
        await capture

    asyncio.run(scenario())

    assert pipeline._pending_deletes == set()
    assert pipeline._in_flight == set()
    assert pipeline.stats.errors == 1
    assert session.sent == []
    assert "p1" not in pipeline.media_cache
