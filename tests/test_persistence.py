import asyncio
import json
import logging
from typing import List

from conftest import CountingStore
from ecomatrix.config import DRAFT_KEY, HISTORY_KEY
from ecomatrix.errors import StorageFailure
from ecomatrix.models import Character, DraftSnapshot
from ecomatrix.persistence import DRAFT_SAVE_FAILED_MESSAGE, HISTORY_FULL_MESSAGE, PersistenceManager


class FailingStore(CountingStore):
    def __init__(self, exc: Exception, **kwargs):
        super().__init__(**kwargs)
        self.exc = exc

    def set(self, key: str, value: str) -> None:
        raise self.exc


def make_manager(store, debounce_ms: int = 20):
    notices: List[str] = []
    return PersistenceManager(store, notify=notices.append, debounce_ms=debounce_ms), notices


def test_legacy_history_is_migrated_and_rewritten() -> None:
    store = CountingStore(initial={HISTORY_KEY: json.dumps([{"prompt": "A"}, {"prompt": "B"}])})
    manager, _ = make_manager(store)

    assert manager.load_history() == ["A", "B"]
    assert json.loads(store.get(HISTORY_KEY)) == ["A", "B"]


def test_current_history_is_loaded_without_rewrite() -> None:
    store = CountingStore(initial={HISTORY_KEY: json.dumps(["A", "B"])})
    manager, _ = make_manager(store)

    assert manager.load_history() == ["A", "B"]
    assert store.writes == []


def test_corrupt_history_is_discarded(caplog) -> None:
    store = CountingStore(initial={HISTORY_KEY: "{oops"})
    manager, notices = make_manager(store)

    with caplog.at_level(logging.WARNING):
        assert manager.load_history() == []
    assert store.get(HISTORY_KEY) is None
    assert notices == []
    assert "Discarding stored history" in caplog.text


def test_record_success_persists_newest_first() -> None:
    store = CountingStore()
    manager, _ = make_manager(store)
    for prompt in ["A", "B", "A"]:
        manager.record_success(prompt)

    assert manager.history == ["A", "B"]
    assert json.loads(store.get(HISTORY_KEY)) == ["A", "B"]


def test_quota_on_history_write_keeps_memory_and_reports_full() -> None:
    store = CountingStore(quota_bytes=40)
    manager, notices = make_manager(store)

    manager.record_success("x" * 100)

    assert manager.history == ["x" * 100]
    assert store.get(HISTORY_KEY) is None
    assert notices == [HISTORY_FULL_MESSAGE]


def test_generic_history_write_failure_is_only_logged(caplog) -> None:
    manager, notices = make_manager(FailingStore(StorageFailure("disk gone")))

    with caplog.at_level(logging.ERROR):
        manager.record_success("A")

    assert manager.history == ["A"]
    assert notices == []
    assert "Failed to save comic history" in caplog.text


def test_clear_history_removes_persisted_value() -> None:
    store = CountingStore()
    manager, _ = make_manager(store)
    manager.record_success("A")

    manager.clear_history()

    assert manager.history == []
    assert store.get(HISTORY_KEY) is None


def test_draft_write_is_debounced() -> None:
    store = CountingStore()
    manager, _ = make_manager(store, debounce_ms=200)

    async def scenario():
        manager.on_fields_changed(DraftSnapshot(prompt="A"))
        await asyncio.sleep(0.1)
        manager.on_fields_changed(DraftSnapshot(prompt="AB"))
        await asyncio.sleep(0.15)
        # the first timer would have fired by now
        assert DRAFT_KEY not in store.writes
        await asyncio.sleep(0.2)

    asyncio.run(scenario())

    assert store.writes.count(DRAFT_KEY) == 1
    assert json.loads(store.get(DRAFT_KEY))["prompt"] == "AB"
    assert manager.has_draft


def test_empty_fields_remove_draft_within_one_cycle() -> None:
    store = CountingStore()
    manager, _ = make_manager(store)

    async def scenario():
        manager.on_fields_changed(DraftSnapshot(
            characters=[Character(id="1", name="Maya")]))
        await asyncio.sleep(0.06)
        assert store.get(DRAFT_KEY) is not None
        manager.on_fields_changed(DraftSnapshot())
        await asyncio.sleep(0.06)

    asyncio.run(scenario())

    assert store.get(DRAFT_KEY) is None
    assert not manager.has_draft


def test_whitespace_prompt_counts_as_empty_draft() -> None:
    store = CountingStore(initial={DRAFT_KEY: DraftSnapshot(prompt="Old").model_dump_json()})
    manager, _ = make_manager(store)

    async def scenario():
        manager.on_fields_changed(DraftSnapshot(prompt="   "))
        await asyncio.sleep(0.06)

    asyncio.run(scenario())

    assert store.get(DRAFT_KEY) is None
    assert DRAFT_KEY not in store.writes
    assert not manager.has_draft


def test_draft_quota_failure_is_a_notice() -> None:
    manager, notices = make_manager(CountingStore(quota_bytes=10))

    manager.save_draft(DraftSnapshot(prompt="a long enough prompt"))

    assert notices == ["Could not save draft: storage is full."]
    assert not manager.has_draft


def test_generic_draft_write_failure_is_a_notice(caplog) -> None:
    manager, notices = make_manager(FailingStore(StorageFailure("disk unplugged")))

    with caplog.at_level(logging.ERROR):
        manager.save_draft(DraftSnapshot(prompt="Solar kids"))

    assert notices == [DRAFT_SAVE_FAILED_MESSAGE]
    assert not manager.has_draft
    assert "disk unplugged" in caplog.text


def test_load_draft_distinguishes_missing_and_corrupt() -> None:
    store = CountingStore()
    manager, _ = make_manager(store)
    assert manager.load_draft().status == "missing"

    store.items[DRAFT_KEY] = "[1, 2"
    assert manager.load_draft().status == "corrupt"

    manager.save_draft(DraftSnapshot(prompt="Solar kids"))
    loaded = manager.load_draft()
    assert loaded.status == "found"
    assert loaded.snapshot.prompt == "Solar kids"


def test_flush_writes_pending_snapshot_immediately() -> None:
    store = CountingStore()
    manager, _ = make_manager(store, debounce_ms=10_000)

    async def scenario():
        manager.on_fields_changed(DraftSnapshot(prompt="Wind farm"))
        assert manager.save_pending
        manager.flush()

    asyncio.run(scenario())

    assert json.loads(store.get(DRAFT_KEY))["prompt"] == "Wind farm"
    assert not manager.save_pending


def test_theme_and_tutorial_flag() -> None:
    manager, _ = make_manager(CountingStore())

    assert manager.load_theme() == "light"
    assert not manager.tutorial_completed()

    manager.save_theme("dark")
    manager.mark_tutorial_completed()

    assert manager.load_theme() == "dark"
    assert manager.tutorial_completed()
