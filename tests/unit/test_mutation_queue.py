"""Tests for MutationQueue: optimistic apply, ordering, compare-and-remove."""
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from tinysteps.db.engine import build_engine
from tinysteps.models.entities import EntityType, SyncAction
from tinysteps.storage.errors import PersistenceError
from tinysteps.storage.local_store import LocalStore
from tinysteps.storage.mutation_queue import MutationQueue


class TestEnqueue:
    def test_returns_unique_ids(self, queue):
        a = queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[1]")
        b = queue.enqueue(EntityType.FEEDING, SyncAction.UPDATE, b"[1, 2]")
        assert a != b
        assert queue.count() == 2

    def test_writes_local_store(self, queue, store):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b'[{"ml": 120}]')
        assert store.get(EntityType.FEEDING) == b'[{"ml": 120}]'

    def test_delete_removes_local_entry(self, queue, store):
        queue.enqueue(EntityType.REMINDER, SyncAction.CREATE, b"[]")
        queue.enqueue(EntityType.REMINDER, SyncAction.DELETE)
        assert store.get(EntityType.REMINDER) is None
        assert [i.action for i in queue.peek_all()] == [SyncAction.CREATE, SyncAction.DELETE]

    def test_item_fields(self, queue, clock):
        item_id = queue.enqueue("milestone", "create", b'{"first": "smile"}')
        item = queue.get(item_id)
        assert item.entity_type is EntityType.MILESTONE
        assert item.action is SyncAction.CREATE
        assert item.payload == b'{"first": "smile"}'
        assert item.timestamp == clock.now

    def test_invalid_entity_type_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue("bathtime", SyncAction.CREATE, b"[]")
        assert queue.count() == 0

    def test_failed_commit_changes_nothing(self, queue, store):
        with patch.object(Session, "commit", side_effect=OperationalError("commit", {}, Exception("disk full"))):
            with pytest.raises(PersistenceError):
                queue.enqueue(EntityType.SLEEP, SyncAction.CREATE, b"[]")
        assert queue.count() == 0
        assert store.get(EntityType.SLEEP) is None

    def test_survives_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'tinysteps.db'}"
        engine = build_engine(url)
        queue = MutationQueue(engine, LocalStore(engine))
        item_id = queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        engine.dispose()

        reopened = build_engine(url)
        store = LocalStore(reopened)
        items = MutationQueue(reopened, store).peek_all()
        assert [i.id for i in items] == [item_id]
        assert store.get(EntityType.FEEDING) == b"[]"
        reopened.dispose()

    def test_concurrent_enqueues_all_land(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
        queue = MutationQueue(engine, LocalStore(engine))
        with ThreadPoolExecutor(max_workers=4) as pool:
            ids = list(pool.map(
                lambda n: queue.enqueue(EntityType.SLEEP, SyncAction.UPDATE, str(n).encode()),
                range(20),
            ))
        assert len(set(ids)) == 20
        assert queue.count() == 20
        engine.dispose()


class TestOrdering:
    def test_peek_all_is_fifo(self, queue):
        ids = [
            queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[1]"),
            queue.enqueue(EntityType.SLEEP, SyncAction.CREATE, b"[2]"),
            queue.enqueue(EntityType.FEEDING, SyncAction.UPDATE, b"[3]"),
        ]
        assert [i.id for i in queue.peek_all()] == ids

    def test_order_independent_of_clock(self, queue, clock):
        first = queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        clock.advance(hours=-3)  # clock skew backwards
        second = queue.enqueue(EntityType.FEEDING, SyncAction.UPDATE, b"[]")
        assert [i.id for i in queue.peek_all()] == [first, second]

    def test_peek_all_is_a_copy(self, queue):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        snapshot = queue.peek_all()
        queue.enqueue(EntityType.SLEEP, SyncAction.CREATE, b"[]")
        assert len(snapshot) == 1


class TestRemoveSucceeded:
    def test_removes_only_given_ids(self, queue):
        a = queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        b = queue.enqueue(EntityType.SLEEP, SyncAction.CREATE, b"[]")
        c = queue.enqueue(EntityType.MOOD, SyncAction.CREATE, b"[]")
        assert queue.remove_succeeded([a, c]) == 2
        assert [i.id for i in queue.peek_all()] == [b]

    def test_items_added_after_peek_are_kept(self, queue):
        a = queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        taken = [i.id for i in queue.peek_all()]
        late = queue.enqueue(EntityType.FEEDING, SyncAction.UPDATE, b"[1]")
        queue.remove_succeeded(taken)
        assert [i.id for i in queue.peek_all()] == [late]
        assert a not in [i.id for i in queue.peek_all()]

    def test_unknown_ids_ignored(self, queue):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        assert queue.remove_succeeded(["nope"]) == 0
        assert queue.remove_succeeded([]) == 0
        assert queue.count() == 1


class TestHousekeeping:
    def test_clear(self, queue, store):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        queue.clear()
        assert queue.count() == 0
        # Local data is untouched by a queue clear
        assert store.get(EntityType.FEEDING) == b"[]"

    def test_footprint_bytes(self, queue):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"1234")
        queue.enqueue(EntityType.FEEDING, SyncAction.DELETE)
        assert queue.footprint_bytes() == 4
