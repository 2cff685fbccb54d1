"""
Host exchange: single-writer commit loop around the functional core.

The engine (``perpcore.core.step``) is pure; this module owns the mutable parts:

- the current ``ExchangeState`` snapshot, swapped atomically under one lock,
- an optional optimistic check (``expected_seq``) for callers that computed
  their intent against an older snapshot,
- the ``VaultLedger`` that performs the step's value transfers after commit,
- notification fan-out to sinks. A failing sink is logged and skipped; it
  cannot undo a committed step.

A step is committed only if the engine accepts it and its transfers can be
executed in full; otherwise the previous snapshot stays current.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional

from ..config import DEFAULT_CONFIG, EngineConfig
from ..core.engine import step, step_or_raise
from ..core.errors import InsufficientCollateral, StaleStateError
from ..core.state import initial_state
from ..core.types import ActionParams, ExchangeState, StepResult
from ..state.balances import VaultLedger
from .sinks import NotificationSink

logger = logging.getLogger(__name__)


class Exchange:
    def __init__(
        self,
        state: Optional[ExchangeState] = None,
        *,
        config: EngineConfig = DEFAULT_CONFIG,
        ledger: Optional[VaultLedger] = None,
        sinks: Iterable[NotificationSink] = (),
    ) -> None:
        self._state = state if state is not None else initial_state()
        self._lock = threading.Lock()
        self.config = config
        self.ledger = ledger if ledger is not None else VaultLedger()
        self.sinks: List[NotificationSink] = list(sinks)

    @property
    def state(self) -> ExchangeState:
        """Current committed snapshot (lock-free read)."""
        return self._state

    @property
    def seq(self) -> int:
        return self._state.seq

    def add_sink(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def submit(self, params: ActionParams, *, expected_seq: Optional[int] = None) -> StepResult:
        """Run one action; commit on acceptance.

        Returns the ``StepResult``; a rejection leaves the state unchanged.
        Raises ``StaleStateError`` if ``expected_seq`` does not match.
        """
        return self._submit(params, expected_seq, raising=False)

    def submit_or_raise(self, params: ActionParams, *, expected_seq: Optional[int] = None) -> StepResult:
        """Like ``submit()`` but raises the engine's ``ExchangeError`` on rejection."""
        return self._submit(params, expected_seq, raising=True)

    def _submit(self, params: ActionParams, expected_seq: Optional[int], *, raising: bool) -> StepResult:
        with self._lock:
            current = self._state
            if expected_seq is not None and expected_seq != current.seq:
                raise StaleStateError(f"expected seq {expected_seq}, current {current.seq}")

            if raising:
                result = step_or_raise(current, params, self.config)
            else:
                result = step(current, params, self.config)
            if not result.accepted or result.state is None:
                logger.info("rejected %s by %r: %s", params.action.value, params.caller, result.rejection)
                return result

            try:
                self.ledger.check(result.transfers)
            except ValueError as exc:
                logger.warning("transfers for %s cannot be settled: %s", params.action.value, exc)
                if raising:
                    raise InsufficientCollateral(str(exc)) from exc
                return StepResult(accepted=False, rejection=InsufficientCollateral.code)

            self._state = result.state
            self.ledger.apply(result.transfers)
            logger.debug("committed %s seq=%d", params.action.value, result.state.seq)

        for effect in result.effects:
            for sink in self.sinks:
                try:
                    sink.publish(effect)
                except Exception:
                    # The step is already committed.
                    logger.exception("sink %r failed on %s", sink, effect.event.value)
        return result
