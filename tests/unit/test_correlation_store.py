"""Unit tests: CommandCorrelationStore (register, merge, callbacks, expiry)."""
import asyncio
import os
import subprocess
import sys
import textwrap
import threading
from pathlib import Path

import pytest

from core.domain.commands import (
    CommandResponse,
    CommandResult,
    CommandResultType,
    PendingCommand,
    StopSessionCommand,
)
from core.domain.errors import ProtocolError
from core.services.correlation_store import CommandCorrelationStore

pytestmark = pytest.mark.unit


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _register(store: CommandCorrelationStore, command_id: str, session_id: str = "S1") -> PendingCommand:
    command = StopSessionCommand(response_url=f"https://emsp/2.2/emsp/STOP_SESSION{command_id}", session_id=session_id)
    return store.upsert(
        command_id,
        lambda cid: PendingCommand.from_command(command, command_id=cid, request_id="r", correlation_id="c"),
        lambda cid, existing: existing.merged_with(command, request_id="r2", correlation_id="c2"),
    )


def test_upsert_registers_new_entry():
    store = CommandCorrelationStore()

    entry = _register(store, "cmd-1")

    assert "cmd-1" in store
    assert len(store) == 1
    assert store.try_get("cmd-1") is entry
    assert entry.request_id == "r"
    assert entry.sync_response is None and entry.async_result is None


def test_upsert_merges_and_preserves_async_result():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")
    store.apply_callback("cmd-1", {"result": "ACCEPTED"})

    merged = _register(store, "cmd-1", session_id="S2")

    assert merged.request_id == "r2"
    assert merged.command.session_id == "S2"
    assert merged.async_result.result is CommandResultType.ACCEPTED
    assert len(store) == 1


def test_callback_before_registration_leaves_placeholder():
    store = CommandCorrelationStore()

    placeholder = store.record_async_result("cmd-early", CommandResult(result="FAILED"))
    assert placeholder.command is None

    entry = _register(store, "cmd-early")

    assert entry.command is not None
    assert entry.async_result.result is CommandResultType.FAILED
    assert entry.result_ready.is_set()


def test_record_sync_response_only_for_known_commands():
    store = CommandCorrelationStore()
    response = CommandResponse(result="ACCEPTED", timeout=30)

    assert store.record_sync_response("missing", response) is False

    _register(store, "cmd-1")
    assert store.record_sync_response("cmd-1", response) is True
    assert store.try_get("cmd-1").sync_response == response


def test_sync_response_does_not_clear_async_result():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")
    store.apply_callback("cmd-1", {"result": "ACCEPTED"})

    store.record_sync_response("cmd-1", CommandResponse(result="ACCEPTED", timeout=30))

    assert store.try_get("cmd-1").async_result is not None


def test_apply_callback_accepts_json_text():
    store = CommandCorrelationStore()

    entry = store.apply_callback("cmd-1", b'{"result": "TIMEOUT", "message": [{"language": "en", "text": "t"}]}')

    assert entry.async_result.result is CommandResultType.TIMEOUT
    assert entry.async_result.message[0].text == "t"


@pytest.mark.parametrize("payload", [{"result": "SOMETIMES"}, "{broken", {}])
def test_apply_callback_rejects_invalid_payload(payload):
    store = CommandCorrelationStore()

    with pytest.raises(ProtocolError):
        store.apply_callback("cmd-1", payload)
    assert "cmd-1" not in store


def test_ttl_purges_stale_entries_on_write():
    clock = FakeClock()
    store = CommandCorrelationStore(ttl_seconds=60, clock=clock)
    _register(store, "old")

    clock.now += 61
    _register(store, "new")

    assert "old" not in store
    assert "new" in store


def test_ttl_counts_from_last_update():
    clock = FakeClock()
    store = CommandCorrelationStore(ttl_seconds=60, clock=clock)
    _register(store, "cmd-1")

    clock.now += 50
    store.record_sync_response("cmd-1", CommandResponse(result="ACCEPTED", timeout=30))
    clock.now += 50

    assert store.purge_expired() == []
    clock.now += 11
    assert store.purge_expired() == ["cmd-1"]


def test_without_ttl_nothing_expires():
    clock = FakeClock()
    store = CommandCorrelationStore(clock=clock)
    _register(store, "cmd-1")

    clock.now += 10**9

    assert store.purge_expired() == []
    assert store.remove("cmd-1") is True
    assert store.remove("cmd-1") is False


def test_concurrent_writers_keep_one_entry_with_result():
    store = CommandCorrelationStore()
    barrier = threading.Barrier(8)

    def register():
        barrier.wait()
        _register(store, "cmd-1")

    def callback():
        barrier.wait()
        store.record_async_result("cmd-1", CommandResult(result="ACCEPTED"))

    threads = [threading.Thread(target=register) for _ in range(4)]
    threads += [threading.Thread(target=callback) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 1
    entry = store.try_get("cmd-1")
    assert entry.async_result is not None
    assert entry.command is not None


@pytest.mark.asyncio
async def test_wait_for_result_returns_late_callback():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")

    timer = threading.Timer(0.05, store.apply_callback, args=("cmd-1", {"result": "ACCEPTED"}))
    timer.start()
    try:
        result = await store.wait_for_result("cmd-1", timeout=2)
    finally:
        timer.cancel()

    assert result is not None
    assert result.result is CommandResultType.ACCEPTED


@pytest.mark.asyncio
async def test_wait_for_result_times_out():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")

    assert await store.wait_for_result("cmd-1", timeout=0.01) is None
    assert await store.wait_for_result("unknown", timeout=0.01) is None


@pytest.mark.asyncio
async def test_wait_for_result_returns_stored_result_immediately():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")
    store.apply_callback("cmd-1", {"result": "REJECTED"})

    result = await store.wait_for_result("cmd-1")

    assert result.result is CommandResultType.REJECTED
    assert store.waiting == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_is_released():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")

    task = asyncio.create_task(store.wait_for_result("cmd-1"))
    await asyncio.sleep(0)
    assert store.waiting == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.waiting == 0
    assert "cmd-1" in store


@pytest.mark.asyncio
async def test_remove_wakes_waiter_with_none():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")
    task = asyncio.create_task(store.wait_for_result("cmd-1"))
    await asyncio.sleep(0)

    store.remove("cmd-1")

    assert await asyncio.wait_for(task, timeout=1) is None
    assert store.waiting == 0


@pytest.mark.asyncio
async def test_ttl_purge_wakes_waiter_with_none():
    clock = FakeClock()
    store = CommandCorrelationStore(ttl_seconds=60, clock=clock)
    _register(store, "cmd-1")
    task = asyncio.create_task(store.wait_for_result("cmd-1"))
    await asyncio.sleep(0)

    clock.now += 61
    assert store.purge_expired() == ["cmd-1"]

    assert await asyncio.wait_for(task, timeout=1) is None


@pytest.mark.asyncio
async def test_callback_from_other_thread_wakes_every_waiter():
    store = CommandCorrelationStore()
    _register(store, "cmd-1")
    tasks = [asyncio.create_task(store.wait_for_result("cmd-1")) for _ in range(3)]
    await asyncio.sleep(0)

    thread = threading.Thread(target=store.apply_callback, args=("cmd-1", {"result": "ACCEPTED"}))
    thread.start()
    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=2)
    thread.join()

    assert [r.result for r in results] == [CommandResultType.ACCEPTED] * 3


_ABANDONED_WAIT = textwrap.dedent(
    """
    import asyncio

    from core.domain.commands import PendingCommand
    from core.services.correlation_store import CommandCorrelationStore

    async def main():
        store = CommandCorrelationStore()
        store.upsert("c1", lambda cid: PendingCommand(command_id=cid), lambda cid, entry: entry)
        try:
            await asyncio.wait_for(store.wait_for_result("c1"), timeout=0.1)
        except asyncio.TimeoutError:
            print("caller gave up")

    asyncio.run(main())
    print("loop closed")
    """
)


def test_abandoned_wait_does_not_block_loop_shutdown():
    src = Path(__file__).resolve().parents[2] / "src"
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(src), os.environ.get("PYTHONPATH")]))}

    completed = subprocess.run(
        [sys.executable, "-c", _ABANDONED_WAIT],
        capture_output=True,
        text=True,
        timeout=10,
        env=env,
    )

    assert completed.returncode == 0, completed.stderr
    assert completed.stdout.split() == ["caller", "gave", "up", "loop", "closed"]
