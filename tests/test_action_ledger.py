from __future__ import annotations

import json

import pytest

from feedsync.domain.models import ActionKind, ActionToken
from feedsync.infra.ledger.action_ledger import LEDGER_STORAGE_KEY, ActionLedger


def liked(entity_id: str) -> ActionToken:
    return ActionToken(entity_id=entity_id, kind=ActionKind.LIKED)


def test_mark_fired_is_idempotent(store):
    ledger = ActionLedger(store)

    assert ledger.mark_fired(liked("a")) is True
    assert ledger.mark_fired(liked("a")) is False
    assert ledger.has_fired(liked("a"))
    assert not ledger.has_fired(ActionToken("a", ActionKind.VIEWED))


def test_capacity_evicts_oldest_first(store):
    ledger = ActionLedger(store, capacity=2)

    ledger.mark_fired(liked("a"))
    ledger.mark_fired(liked("b"))
    ledger.mark_fired(liked("c"))

    assert not ledger.has_fired(liked("a"))
    assert ledger.has_fired(liked("b"))
    assert ledger.has_fired(liked("c"))
    assert len(ledger) == 2


def test_remarking_does_not_refresh_age(store):
    ledger = ActionLedger(store, capacity=2)

    ledger.mark_fired(liked("a"))
    ledger.mark_fired(liked("b"))
    ledger.mark_fired(liked("a"))
    ledger.mark_fired(liked("c"))

    assert [t.entity_id for t in ledger.tokens()] == ["b", "c"]


def test_ledger_survives_restart(store):
    ActionLedger(store).mark_fired(liked("a"))

    reloaded = ActionLedger(store)

    assert reloaded.has_fired(liked("a"))
    assert json.loads(store.data[LEDGER_STORAGE_KEY]) == [["a", "liked"]]


def test_corrupted_payload_starts_empty(store):
    store.data[LEDGER_STORAGE_KEY] = "{not json"

    ledger = ActionLedger(store)

    assert ledger.tokens() == []
    assert ledger.mark_fired(liked("a")) is True


def test_invalid_tokens_are_skipped_on_load(store):
    store.data[LEDGER_STORAGE_KEY] = json.dumps([["a", "liked"], ["b", "shared"], "junk", ["", "viewed"]])

    ledger = ActionLedger(store)

    assert ledger.tokens() == [liked("a")]


def test_storage_failures_degrade_gracefully(store):
    store.fail_reads = True
    store.fail_writes = True
    ledger = ActionLedger(store)

    assert ledger.mark_fired(liked("a")) is True
    assert ledger.mark_fired(liked("a")) is False


def test_failed_read_does_not_overwrite_stored_tokens(store):
    ActionLedger(store).mark_fired(liked("old"))

    store.fail_reads = True
    degraded = ActionLedger(store)
    assert degraded.mark_fired(liked("new")) is True
    assert json.loads(store.data[LEDGER_STORAGE_KEY]) == [["old", "liked"]]

    store.fail_reads = False
    restarted = ActionLedger(store)
    assert restarted.has_fired(liked("old"))


def test_session_tokens_are_merged_after_store_recovers(store):
    ActionLedger(store).mark_fired(liked("old"))
    store.fail_reads = True
    ledger = ActionLedger(store)
    ledger.mark_fired(liked("new"))

    store.fail_reads = False
    ledger.mark_fired(liked("later"))

    assert ledger.tokens() == [liked("old"), liked("new"), liked("later")]
    assert json.loads(store.data[LEDGER_STORAGE_KEY]) == [["old", "liked"], ["new", "liked"], ["later", "liked"]]


def test_capacity_must_be_positive(store):
    with pytest.raises(ValueError):
        ActionLedger(store, capacity=0)
