"""Room State Machine - Membership lifecycle FSM.

States:
- IDLE: Not in a room
- JOINING: Connecting, negotiating and seeding the room population
- JOINED: Membership established, events are reconciled
- LEAVING: Teardown in progress

Besides the main cycle, a failed join returns JOINING -> IDLE, a leave
during a join goes JOINING -> LEAVING, and a rejoin after a full signaling
disconnect goes JOINED -> JOINING.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from roomclient.config.constants import ROOM
from roomclient.exceptions import SessionStateError
from roomclient.observability.logging import get_logger

logger = get_logger(__name__)


class RoomState(Enum):
    """Room membership state."""

    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"


# Valid state transitions
VALID_TRANSITIONS: dict[RoomState, set[RoomState]] = {
    RoomState.IDLE: {RoomState.JOINING},
    RoomState.JOINING: {RoomState.JOINED, RoomState.IDLE, RoomState.LEAVING},
    RoomState.JOINED: {RoomState.LEAVING, RoomState.JOINING},
    RoomState.LEAVING: {RoomState.IDLE},
}


@dataclass
class StateTransition:
    """Record of a state transition."""

    old_state: RoomState
    new_state: RoomState
    t_ms: int
    reason: str


StateChangeCallback = Callable[[StateTransition], None]
AsyncStateChangeCallback = Callable[[StateTransition], asyncio.Future]


class RoomStateMachine:
    """4-state FSM for room membership.

    Usage:
        fsm = RoomStateMachine(room_id="1234")
        fsm.on_state_change(handle_state_change)

        await fsm.transition_to(RoomState.JOINING, "connect_to_room")
    """

    def __init__(self, room_id: str | None = None) -> None:
        self._room_id = room_id
        self._state = RoomState.IDLE

        self._on_change_callbacks: list[StateChangeCallback | AsyncStateChangeCallback] = []

        self._history: list[StateTransition] = []
        self._max_history = ROOM.STATE_HISTORY_MAX

    @property
    def state(self) -> RoomState:
        """Current room state."""
        return self._state

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @room_id.setter
    def room_id(self, value: str | None) -> None:
        self._room_id = value

    def can_transition(self, new_state: RoomState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self._state, set())

    def on_state_change(
        self, callback: StateChangeCallback | AsyncStateChangeCallback
    ) -> None:
        """Register callback for any state change."""
        self._on_change_callbacks.append(callback)

    async def transition_to(
        self,
        new_state: RoomState,
        reason: str = "",
    ) -> StateTransition:
        """Transition to a new state.

        Args:
            new_state: Target state
            reason: Reason for transition

        Returns:
            The recorded transition

        Raises:
            SessionStateError: If the transition is not allowed
        """
        old_state = self._state

        if not self.can_transition(new_state):
            raise SessionStateError(
                f"Invalid transition: {old_state.value} -> {new_state.value}",
                room_id=self._room_id,
                current_state=old_state.value,
                target_state=new_state.value,
            )

        transition = StateTransition(
            old_state=old_state,
            new_state=new_state,
            t_ms=int(time.monotonic() * 1000),
            reason=reason,
        )

        self._state = new_state
        await self._call_callbacks(transition)

        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        return transition

    async def _call_callbacks(self, transition: StateTransition) -> None:
        for callback in self._on_change_callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(transition)
                else:
                    callback(transition)
            except Exception as e:
                # Callback errors never block a transition
                logger.error(
                    "state_callback_error",
                    room_id=self._room_id,
                    new_state=transition.new_state.value,
                    error=str(e),
                )

    @property
    def history(self) -> list[StateTransition]:
        """Transition history (most recent last)."""
        return self._history.copy()
