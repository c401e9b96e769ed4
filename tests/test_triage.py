#!filepath: tests/test_triage.py
from __future__ import annotations

import pytest
from conftest import make_signal

from canopticon_app.db.store import Store
from canopticon_app.errors import ClaimConflict, InvalidTransition, NotFoundError
from canopticon_app.models import SignalStatus
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.utils.dates import iso_ago


def test_operator_approve_then_archive(store: Store) -> None:
    sm = SignalStateMachine(store)
    sid = make_signal(store)

    assert sm.approve(sid).status is SignalStatus.APPROVED
    assert sm.archive(sid).status is SignalStatus.ARCHIVED
    assert sm.rescue(sid).status is SignalStatus.PENDING


def test_forbidden_transition_raises_and_keeps_status(store: Store) -> None:
    sm = SignalStateMachine(store)
    sid = make_signal(store, status=SignalStatus.REJECTED)

    with pytest.raises(InvalidTransition) as exc:
        sm.approve(sid)

    assert exc.value.current == "rejected"
    assert store.get_signal(sid).status is SignalStatus.REJECTED


def test_unknown_signal_is_not_found(store: Store) -> None:
    with pytest.raises(NotFoundError):
        SignalStateMachine(store).approve(999)
    with pytest.raises(NotFoundError):
        SignalStateMachine(store).delete(999)


def test_claim_is_exclusive(store: Store) -> None:
    sm = SignalStateMachine(store)
    sid = make_signal(store, status=SignalStatus.APPROVED)

    assert sm.claim(sid).status is SignalStatus.PROCESSING
    with pytest.raises(ClaimConflict):
        sm.claim(sid)

    assert sm.release(sid).status is SignalStatus.APPROVED


def test_publish_requires_published_article(store: Store) -> None:
    sm = SignalStateMachine(store)
    sid = make_signal(store, status=SignalStatus.APPROVED)

    with pytest.raises(InvalidTransition):
        sm.publish(sid)
    assert store.get_signal(sid).status is SignalStatus.APPROVED


def test_rescue_stalled_moves_old_processing_only(store: Store) -> None:
    sm = SignalStateMachine(store)
    stale = make_signal(store, status=SignalStatus.PROCESSING)
    fresh = make_signal(store, status=SignalStatus.PROCESSING)
    store.conn.execute(
        "UPDATE signals SET updated_at = ? WHERE id = ?;", (iso_ago(minutes=45), stale)
    )
    store.conn.commit()

    assert sm.rescue_stalled(30) == 1
    assert store.get_signal(stale).status is SignalStatus.PENDING
    assert store.get_signal(fresh).status is SignalStatus.PROCESSING


def test_rescue_stalled_returns_drafted_signal_to_approved(store: Store) -> None:
    sm = SignalStateMachine(store)
    sid = make_signal(store, status=SignalStatus.PROCESSING)
    store.insert_article(
        signal_id=sid,
        slug="stranded-draft",
        headline="Stranded draft",
        summary="",
        content={"type": "doc", "content": []},
        topics=[],
        entities=[],
        reading_time=1,
    )
    store.conn.execute(
        "UPDATE signals SET updated_at = ? WHERE id = ?;", (iso_ago(minutes=45), sid)
    )
    store.conn.commit()

    assert sm.rescue_stalled(30) == 1
    assert store.get_signal(sid).status is SignalStatus.APPROVED


def test_auto_triage_by_score_and_age(store: Store) -> None:
    sm = SignalStateMachine(store)
    high = make_signal(store, score=90)
    borderline = make_signal(store, score=55)
    low_new = make_signal(store, score=10)
    low_old = make_signal(store, score=10, created_at=iso_ago(minutes=120))
    unscored = make_signal(store, score=0, scored=False, created_at=iso_ago(days=2))

    res = sm.auto_triage(threshold=65, reject_below=40, grace_minutes=60)

    assert (res.approved, res.rejected, res.held) == (1, 1, 2)
    assert store.get_signal(high).status is SignalStatus.APPROVED
    assert store.get_signal(borderline).status is SignalStatus.PENDING
    assert store.get_signal(low_new).status is SignalStatus.PENDING
    assert store.get_signal(low_old).status is SignalStatus.REJECTED
    assert store.get_signal(unscored).status is SignalStatus.PENDING


def test_auto_triage_threshold_is_inclusive(store: Store) -> None:
    sid = make_signal(store, score=65)

    res = SignalStateMachine(store).auto_triage(threshold=65)

    assert res.approved == 1
    assert store.get_signal(sid).status is SignalStatus.APPROVED


def test_delete_keeps_article_with_cleared_link(store: Store) -> None:
    sid = make_signal(store, status=SignalStatus.APPROVED)
    article_id = store.insert_article(
        signal_id=sid,
        slug="bill-c-11",
        headline="Bill C-11",
        summary="Summary",
        content={"type": "doc", "content": []},
        topics=[],
        entities=[],
        reading_time=1,
        is_draft=True,
    )

    SignalStateMachine(store).delete(sid)

    assert store.get_signal(sid) is None
    assert store.get_article(article_id).signal_id is None
