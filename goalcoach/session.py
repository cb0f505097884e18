# goalcoach/session.py
import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any

from goalcoach.entities import GoalState, Reset
from goalcoach.state_machine import DispatchResult, GoalStateMachine, coerce_event

logger = logging.getLogger("goalcoach")


@dataclass(frozen=True)
class RequestToken:
    session_id: str
    epoch: int
    seq: int
    service_tag: str


class GoalSession:
    """
    One goal session: the state machine, a lock that serializes its events,
    and the outstanding-request registry behind the stale-response guard.

    - begin_request() hands out a token before a gateway call.
    - apply(token, event) dispatches only if the token is still live;
      cancel(token) and RESET both kill tokens, so a late result is dropped.
    """

    def __init__(self, session_id: str, machine: GoalStateMachine | None = None):
        self.session_id = str(session_id)
        self.machine = machine or GoalStateMachine()
        self.lock = asyncio.Lock()
        self.stopped = False
        self._epoch = 0
        self._seq = itertools.count(1)
        self._live: set[int] = set()

    @property
    def state(self) -> GoalState:
        return self.machine.state

    # -----------------------
    # Request tokens
    # -----------------------

    def begin_request(self, service_tag: str) -> RequestToken:
        token = RequestToken(self.session_id, self._epoch, next(self._seq), service_tag)
        self._live.add(token.seq)
        return token

    def is_live(self, token: RequestToken) -> bool:
        return token.epoch == self._epoch and token.seq in self._live

    def cancel(self, token: RequestToken) -> bool:
        """Abandon a pending request. Returns False if it was already gone."""
        if not self.is_live(token):
            return False
        self._live.discard(token.seq)
        logger.info(f"session {self.session_id}: request {token.seq} ({token.service_tag}) cancelled")
        return True

    def cancel_all(self) -> int:
        n = len(self._live)
        self._epoch += 1
        self._live.clear()
        return n

    def finish(self, token: RequestToken) -> None:
        self._live.discard(token.seq)

    # -----------------------
    # Events
    # -----------------------

    def dispatch(self, event: Any) -> DispatchResult:
        event = coerce_event(event)
        result = self.machine.dispatch(event)
        if isinstance(event, Reset):
            dropped = self.cancel_all()
            if dropped:
                logger.info(f"session {self.session_id}: RESET invalidated {dropped} pending request(s)")
        return result

    def apply(self, token: RequestToken, event: Any) -> DispatchResult | None:
        """
        Dispatch the event produced by the request behind `token`, unless the
        request was cancelled or a RESET happened meanwhile (returns None).
        """
        if not self.is_live(token):
            logger.info(
                f"session {self.session_id}: dropping stale {token.service_tag} result (request {token.seq})"
            )
            return None
        self.finish(token)
        return self.dispatch(event)
