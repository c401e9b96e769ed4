#!filepath: src/canopticon_app/modules/triage.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, FrozenSet

from canopticon_app.db.store import Store
from canopticon_app.errors import ClaimConflict, InvalidTransition, NotFoundError
from canopticon_app.models import Signal, SignalStatus
from canopticon_app.utils.dates import parse_iso, to_iso, utc_now
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

S = SignalStatus

# target -> states it may be entered from
TRANSITIONS: Dict[SignalStatus, FrozenSet[SignalStatus]] = {
    S.APPROVED: frozenset({S.PENDING}),
    S.REJECTED: frozenset({S.PENDING}),
    S.ARCHIVED: frozenset({S.APPROVED, S.REJECTED}),
    S.PROCESSING: frozenset({S.APPROVED}),
    S.PUBLISHED: frozenset({S.APPROVED, S.PROCESSING}),
    S.PENDING: frozenset({S.ARCHIVED, S.PROCESSING}),
}


@dataclass(frozen=True, slots=True)
class TriageResult:
    approved: int = 0
    rejected: int = 0
    held: int = 0


class SignalStateMachine:
    """The only writer of `signals.status`.

    Each transition is one conditional UPDATE on the current status, so two
    cycles racing on the same signal cannot both win.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def _get(self, signal_id: int) -> Signal:
        sig = self._store.get_signal(signal_id)
        if sig is None:
            raise NotFoundError(f"Signal not found, id={signal_id}")
        return sig

    def _move(self, signal_id: int, target: SignalStatus) -> Signal:
        allowed = TRANSITIONS[target]
        if self._store.update_signal_status(
            signal_id, from_statuses=allowed, to_status=target
        ):
            logger.info(f"Signal moved, signal_id={signal_id}, status={target.value}")
            return self._get(signal_id)

        current = self._get(signal_id)
        raise InvalidTransition(signal_id, current.status.value, target.value)

    def approve(self, signal_id: int) -> Signal:
        """Operator approval of a pending signal, whatever its score.

        Args:
            signal_id: Signal to approve.

        Returns:
            Signal: The signal as stored after the move.

        Raises:
            InvalidTransition: The signal is not pending.
            NotFoundError: Unknown id.
        """
        return self._move(signal_id, S.APPROVED)

    def reject(self, signal_id: int) -> Signal:
        """Operator rejection of a pending signal.

        Raises:
            InvalidTransition: The signal is not pending.
            NotFoundError: Unknown id.
        """
        return self._move(signal_id, S.REJECTED)

    def archive(self, signal_id: int) -> Signal:
        """Shelve an approved or rejected signal. `rescue` undoes it."""
        return self._move(signal_id, S.ARCHIVED)

    def claim(self, signal_id: int) -> Signal:
        """Take exclusive ownership of an approved signal for synthesis.

        Raises:
            ClaimConflict: The signal is no longer approved.
            NotFoundError: Unknown id.
        """
        try:
            return self._move(signal_id, S.PROCESSING)
        except InvalidTransition as e:
            raise ClaimConflict(signal_id, e.current) from e

    def release(self, signal_id: int) -> Signal:
        """Hand a processing signal back to the approved queue."""
        if self._store.update_signal_status(
            signal_id, from_statuses=(S.PROCESSING,), to_status=S.APPROVED
        ):
            logger.info(f"Signal released, signal_id={signal_id}")
            return self._get(signal_id)
        current = self._get(signal_id)
        raise InvalidTransition(signal_id, current.status.value, S.APPROVED.value)

    def publish(self, signal_id: int) -> Signal:
        """Mark published, only once a published article exists."""
        current = self._get(signal_id)
        if not self._store.has_published_article(signal_id):
            raise InvalidTransition(signal_id, current.status.value, S.PUBLISHED.value)
        return self._move(signal_id, S.PUBLISHED)

    def rescue(self, signal_id: int) -> Signal:
        """Return an archived or stuck signal to the pending queue."""
        return self._move(signal_id, S.PENDING)

    def rescue_stalled(self, stall_minutes: int) -> int:
        """Unstick processing signals idle past the stall window.

        A signal without an article goes back to pending for triage. One that
        already owns a draft goes back to approved, where the publishing stage
        or an operator finishes it.

        Args:
            stall_minutes: Minutes since the last status change.

        Returns:
            int: Signals rescued.
        """
        before = to_iso(utc_now() - timedelta(minutes=int(stall_minutes)))
        count = 0
        for sig in self._store.list_stalled_processing(before_iso=before):
            target = (
                S.APPROVED
                if self._store.article_for_signal(sig.id) is not None
                else S.PENDING
            )
            if self._store.update_signal_status(
                sig.id, from_statuses=(S.PROCESSING,), to_status=target
            ):
                logger.info(f"Stalled signal moved, signal_id={sig.id}, status={target.value}")
                count += 1
        if count:
            logger.warning(f"Stalled signals rescued, count={count}, stall_minutes={stall_minutes}")
        return count

    def delete(self, signal_id: int) -> None:
        """Hard delete. Articles keep existing with their link cleared."""
        if not self._store.delete_signal(signal_id):
            raise NotFoundError(f"Signal not found, id={signal_id}")
        logger.warning(f"Signal deleted, signal_id={signal_id}")

    def auto_triage(
        self,
        *,
        threshold: int,
        reject_below: int = 40,
        grace_minutes: int = 60,
        limit: int = 100,
    ) -> TriageResult:
        """Approve or reject scored pending signals by score.

        Signals at or above `threshold` are approved. Signals under
        `reject_below` are rejected once older than the grace window.
        Unscored placeholders are never touched.
        """
        grace_cutoff = utc_now() - timedelta(minutes=int(grace_minutes))
        approved = 0
        rejected = 0
        held = 0

        for sig in self._store.list_signals(
            status=S.PENDING, scored_only=True, limit=limit
        ):
            target = None
            if sig.confidence_score >= int(threshold):
                target = S.APPROVED
            elif sig.confidence_score < int(reject_below):
                created = parse_iso(sig.created_at)
                if created is not None and created <= grace_cutoff:
                    target = S.REJECTED

            if target is None:
                held += 1
                continue

            # a concurrent operator action wins, the signal is simply skipped
            if not self._store.update_signal_status(
                sig.id, from_statuses=(S.PENDING,), to_status=target
            ):
                held += 1
                continue

            if target is S.APPROVED:
                approved += 1
            else:
                rejected += 1
            logger.info(
                f"Signal triaged, signal_id={sig.id}, score={sig.confidence_score}, status={target.value}"
            )

        return TriageResult(approved=approved, rejected=rejected, held=held)
