"""Room module - Membership orchestration and room population.

Provides:
- RoomClient: Join/leave orchestration, local media, event reconciliation
- PeerRegistry: Remote peers and per-stream state
- RoomStateMachine: 4-state membership FSM
- TaskScope: Background tasks cancelled on leave
"""

from roomclient.room.client import RoomClient, RoomConfig
from roomclient.room.consumers import ConsumerProducerMap
from roomclient.room.levels import clamp_score, level_to_volume
from roomclient.room.registry import (
    LocalMediaState,
    Peer,
    PeerRegistry,
    RoomSnapshot,
    StreamState,
)
from roomclient.room.state_machine import RoomState, RoomStateMachine
from roomclient.room.task_scope import TaskScope

__all__ = [
    # Orchestration
    "RoomClient",
    "RoomConfig",
    # Registry
    "PeerRegistry",
    "Peer",
    "StreamState",
    "LocalMediaState",
    "RoomSnapshot",
    "ConsumerProducerMap",
    # State machine
    "RoomState",
    "RoomStateMachine",
    # Helpers
    "TaskScope",
    "level_to_volume",
    "clamp_score",
]
