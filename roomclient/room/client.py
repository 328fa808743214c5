"""Room Client - Orchestrates one room membership.

Composes the signaling channel, the media engine, local capture and the
peer registry:
- Join: joinRoom -> load capabilities -> both transports -> seed and
  consume the existing population -> JOINED
- Local media: camera / microphone / screen producers and their toggles
- Remote media: serialized consumes against the receive transport
- Reconciliation: server pushes folded into the registry
- Leave: best-effort, ordered teardown that never raises

Every registry mutation happens on the event loop and is followed by a
new immutable RoomSnapshot delivered to subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from roomclient.config.constants import ROOM
from roomclient.exceptions import (
    RoomClientError,
    SessionStateError,
    SignalingError,
    TransportUnavailableError,
)
from roomclient.media.capture import MediaCapture
from roomclient.media.engine import (
    ConsumeOptions,
    ConsumerHandle,
    Direction,
    MediaEngine,
    ProducerHandle,
    TransportHandle,
    TransportOptions,
)
from roomclient.media.platform import AudioOutput, CallPlatform, NullCallPlatform
from roomclient.observability.logging import RoomLogger, bind_room, get_logger, unbind_room
from roomclient.observability.metrics import (
    record_consume,
    record_error,
    record_join,
    record_leave,
    update_room_gauges,
)
from roomclient.room.consumers import ConsumerProducerMap
from roomclient.room.levels import clamp_score, level_to_volume
from roomclient.room.registry import LocalMediaState, PeerRegistry, RoomSnapshot
from roomclient.room.state_machine import RoomState, RoomStateMachine, StateTransition
from roomclient.room.task_scope import TaskScope
from roomclient.signaling.channel import SignalingChannel
from roomclient.signaling.protocol import (
    ConnectTransportRequest,
    ConsumeRequest,
    ConsumeResponse,
    ConsumerRef,
    CreateTransportRequest,
    JoinRoomRequest,
    JoinRoomResponse,
    MediaSource,
    PeerEvent,
    ProduceRequest,
    ProduceResponse,
    ProducerInfo,
    ProducerRef,
    ProducerScoreEvent,
    ProducerStateEvent,
    SignalEvent,
    TransportInfo,
    parse_active_speakers,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

SuccessCallback = Callable[[], Any]
ErrorCallback = Callable[[Exception], Any]
SnapshotCallback = Callable[[RoomSnapshot], None]


@dataclass
class RoomConfig:
    """Timing knobs of the room client."""

    screen_share_settle_ms: int = ROOM.SCREEN_SHARE_SETTLE_MS
    task_cancel_timeout_ms: int = ROOM.TASK_CANCEL_TIMEOUT_MS

    @classmethod
    def from_settings(cls, settings) -> "RoomConfig":
        return cls(screen_share_settle_ms=settings.screen_share_settle_ms)


class RoomClient:
    """Room session orchestrator.

    One instance is owned by the composing application and reused across
    memberships.

    Usage:
        client = RoomClient(channel, engine, capture, platform)
        client.subscribe(render)

        if await client.connect_to_room("1234"):
            await client.start_local_media(want_camera=True, want_mic=False)
            await client.toggle_mic()

        await client.exit_room()
    """

    def __init__(
        self,
        channel: SignalingChannel,
        engine: MediaEngine,
        capture: MediaCapture | None = None,
        platform: CallPlatform | None = None,
        config: RoomConfig | None = None,
    ) -> None:
        self._channel = channel
        self._engine = engine
        self._capture = capture or MediaCapture()
        self._platform = platform or NullCallPlatform()
        self._config = config or RoomConfig()

        self._fsm = RoomStateMachine()
        self._fsm.on_state_change(self._on_state_change)
        self._registry = PeerRegistry()
        self._consumer_map = ConsumerProducerMap()
        self._consumer_handles: dict[str, ConsumerHandle] = {}
        self._consuming: set[str] = set()
        self._scope = TaskScope("room")

        # Held for request + engine consume + resume of every consume
        self._recv_lock = asyncio.Lock()
        self._leave_lock = asyncio.Lock()
        # Held across every local-media intent
        self._media_lock = asyncio.Lock()

        self._room_id: str | None = None
        self._local = LocalMediaState()
        self._send_transport: TransportHandle | None = None
        self._recv_transport: TransportHandle | None = None
        self._producers: dict[MediaSource, ProducerHandle] = {}

        self._join_latch = False
        self._join_task: asyncio.Task | None = None
        self._join_outcome: asyncio.Future | None = None
        self._on_success: SuccessCallback | None = None
        self._on_error: ErrorCallback | None = None

        self._subscribers: list[SnapshotCallback] = []
        self._cleanup_errors: list[Exception] = []
        self._log = RoomLogger()

        self._engine.set_callbacks(self._on_transport_connect, self._on_transport_produce)

    # -------------------------------------------------------------------------
    # Observable surface
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RoomState:
        return self._fsm.state

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def local_media(self) -> LocalMediaState:
        return self._local

    @property
    def snapshot(self) -> RoomSnapshot:
        """Immutable view of the current session."""
        return self._registry.snapshot(self._room_id, self._fsm.state.value, self._local)

    @property
    def consumers(self) -> dict[str, str]:
        """Copy of the consumer_id -> producer_id correspondence."""
        return self._consumer_map.snapshot()

    @property
    def last_cleanup_errors(self) -> list[Exception]:
        """Errors swallowed by the most recent leave."""
        return list(self._cleanup_errors)

    @property
    def state_history(self) -> list[StateTransition]:
        return self._fsm.history

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Receive a snapshot after every mutation. Returns an unsubscribe."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot
        update_room_gauges(
            peers=len(snapshot.peers),
            streams=sum(1 for s in snapshot.streams.values() if s.announced),
            local_producers=len(self._producers),
        )
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("snapshot_observer_error", error=str(e))

    def _set_local(self, **changes: Any) -> None:
        self._local = replace(self._local, **changes)
        self._publish()

    def _on_state_change(self, transition: StateTransition) -> None:
        self._log.state_change(
            transition.old_state.value,
            transition.new_state.value,
            transition.reason,
        )
        self._publish()

    # -------------------------------------------------------------------------
    # Join
    # -------------------------------------------------------------------------

    async def connect_to_room(
        self,
        room_id: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> bool:
        """Join a room.

        Args:
            room_id: Room to join
            on_success: Called after every successful join (rejoins included)
            on_error: Called with the error after every failed join

        Returns:
            True once JOINED, False if the join failed or was cancelled

        Raises:
            SessionStateError: If a membership is already active
        """
        if self._fsm.state is not RoomState.IDLE:
            raise SessionStateError(
                "Room session already active",
                room_id=self._room_id,
                current_state=self._fsm.state.value,
                target_state=RoomState.JOINING.value,
            )

        self._room_id = room_id
        self._fsm.room_id = room_id
        self._on_success = on_success
        self._on_error = on_error
        self._log = self._log.bind(room_id)
        bind_room(room_id)
        self._scope.reopen()
        self._join_outcome = asyncio.get_running_loop().create_future()
        outcome = self._join_outcome

        await self._fsm.transition_to(RoomState.JOINING, "connect_to_room")
        self._bind_channel()

        try:
            await self._channel.connect()
        except Exception as e:
            if self._fsm.state is RoomState.JOINING:
                self._log.join_failed(e, 0.0)
                record_join("error")
                await self._abort_join(e)
            self._resolve_join(False)
            return False

        # Clients that connected without a connect event still need a join
        if not self._join_latch and self._fsm.state is RoomState.JOINING:
            self._on_channel_connect()

        return await asyncio.shield(outcome)

    def _bind_channel(self) -> None:
        channel = self._channel
        channel.on_connect(self._on_channel_connect)
        channel.on_disconnect(self._on_channel_disconnect)
        channel.on(SignalEvent.PEER_JOINED, self.handle_peer_joined)
        channel.on(SignalEvent.PEER_LEAVE, self.handle_peer_left)
        channel.on(SignalEvent.PEER_LEFT, self.handle_peer_left)
        channel.on(SignalEvent.NEW_PRODUCER, self.handle_new_producer)
        channel.on(SignalEvent.CONSUMER_CLOSED, self.handle_consumer_closed)
        channel.on(SignalEvent.PRODUCER_PAUSED, self.handle_producer_paused)
        channel.on(SignalEvent.PRODUCER_RESUMED, self.handle_producer_resumed)
        channel.on(SignalEvent.ACTIVE_SPEAKER, self.handle_active_speaker)
        channel.on(SignalEvent.PRODUCER_SCORE, self.handle_producer_score)

    def _on_channel_connect(self) -> None:
        # Runs inside the channel's event delivery; the join itself is
        # spawned so acks can keep flowing.
        if self._join_latch:
            logger.debug("join_latch_ignored_connect", state=self._fsm.state.value)
            return
        if self._join_task is not None and not self._join_task.done():
            return

        state = self._fsm.state
        if state is RoomState.JOINING:
            rejoin = False
        elif state is RoomState.JOINED:
            rejoin = True
        else:
            return

        self._join_latch = True
        self._join_task = self._scope.spawn(self._run_join(rejoin), name="join")

    def _on_channel_disconnect(self) -> None:
        # Only a full disconnect re-arms the join
        self._join_latch = False
        logger.info("signaling_lost", state=self._fsm.state.value)

    async def _run_join(self, rejoin: bool) -> None:
        start = time.perf_counter()
        self._log.join_started(rejoin=rejoin)
        try:
            if rejoin:
                await self._fsm.transition_to(RoomState.JOINING, "signaling_reconnected")
                await self._release_membership_media()
            streams, consumed = await self._join_sequence()
            await self._fsm.transition_to(RoomState.JOINED, "join_complete")
        except asyncio.CancelledError:
            record_join("cancelled")
            self._resolve_join(False)
            raise
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            if self._fsm.state is not RoomState.JOINING:
                # A leave took over
                record_join("cancelled")
                self._resolve_join(False)
                return
            self._log.join_failed(e, elapsed_ms)
            record_join("error")
            await self._abort_join(e)
            return

        elapsed_s = time.perf_counter() - start
        record_join("success", elapsed_s)
        self._log.join_completed(
            peers=len(self._registry.peers),
            streams=streams,
            consumed=consumed,
            elapsed_ms=elapsed_s * 1000,
        )
        self._resolve_join(True)
        await self._invoke(self._on_success)

    async def _join_sequence(self) -> tuple[int, int]:
        join = await self._channel.request(
            SignalEvent.JOIN_ROOM,
            JoinRoomRequest(room_id=self._room_id),
            response_model=JoinRoomResponse,
        )
        await self._engine.load_capabilities(join.rtp_capabilities)

        send_info, recv_info = await asyncio.gather(
            self._channel.request(
                SignalEvent.CREATE_TRANSPORT,
                CreateTransportRequest(sender=True),
                response_model=TransportInfo,
            ),
            self._channel.request(
                SignalEvent.CREATE_TRANSPORT,
                CreateTransportRequest(sender=False),
                response_model=TransportInfo,
            ),
        )
        self._send_transport = await self._engine.create_transport(
            Direction.SEND, TransportOptions.from_info(send_info)
        )
        self._recv_transport = await self._engine.create_transport(
            Direction.RECV, TransportOptions.from_info(recv_info)
        )
        self._platform.start_call()

        for peer_id in join.existing_peers:
            self._registry.upsert_peer(peer_id)
        for producer in join.existing_producers:
            self._announce(producer)
        self._publish()

        # Producers announced by pushes while the join was running are
        # picked up here as well.
        pending = [
            s.producer_id
            for s in self._registry.streams.values()
            if s.announced and not s.rendering
        ]
        consumed = 0
        for producer_id in pending:
            if await self.consume_stream(producer_id):
                consumed += 1
        return len(pending), consumed

    async def _abort_join(self, error: Exception) -> None:
        on_error = self._on_error
        await self._teardown("join_abort")
        if self._fsm.state is RoomState.JOINING:
            await self._fsm.transition_to(RoomState.IDLE, "join_failed")
        self._reset_session()
        self._resolve_join(False)
        await self._invoke(on_error, error)

    def _resolve_join(self, joined: bool) -> None:
        outcome = self._join_outcome
        if outcome is not None and not outcome.done():
            outcome.set_result(joined)

    # -------------------------------------------------------------------------
    # Engine callbacks
    # -------------------------------------------------------------------------

    async def _on_transport_connect(self, transport_id: str, dtls_parameters: dict) -> None:
        await self._channel.notify(
            SignalEvent.CONNECT_TRANSPORT,
            ConnectTransportRequest(transport_id=transport_id, dtls_parameters=dtls_parameters),
        )

    async def _on_transport_produce(
        self,
        transport_id: str,
        kind: str,
        rtp_parameters: dict,
        app_data: dict,
    ) -> str:
        response = await self._channel.request(
            SignalEvent.PRODUCE,
            ProduceRequest(
                transport_id=transport_id,
                kind=kind,
                rtp_parameters=rtp_parameters,
                app_data=app_data,
            ),
            response_model=ProduceResponse,
        )
        return response.producer_id

    # -------------------------------------------------------------------------
    # Remote consumption
    # -------------------------------------------------------------------------

    async def consume_stream(self, producer_id: str) -> bool:
        """Subscribe to a remote producer.

        Serialized against every other consume on the receive transport.
        Failures are logged and counted, never raised, never retried.

        Returns:
            True if the stream is now rendering
        """
        if producer_id in self._consuming or self._consumer_map.has_producer(producer_id):
            record_consume("skipped")
            return False

        self._consuming.add(producer_id)
        start = time.perf_counter()
        try:
            async with self._recv_lock:
                consumer = await self._consume_locked(producer_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.consume_failed(producer_id, e)
            record_consume("error")
            record_error("room", type(e).__name__)
            return False
        finally:
            self._consuming.discard(producer_id)

        if consumer is None:
            record_consume("skipped")
            return False
        record_consume("success", time.perf_counter() - start)
        return True

    async def _consume_locked(self, producer_id: str) -> ConsumerHandle | None:
        transport = self._recv_transport
        if transport is None or transport.closed:
            raise TransportUnavailableError(Direction.RECV.value)
        if self._registry.get_stream(producer_id) is None:
            # Closed before the lock was acquired
            return None

        response = await self._channel.request(
            SignalEvent.CONSUME,
            ConsumeRequest(
                producer_id=producer_id,
                transport_id=transport.id,
                rtp_capabilities=self._engine.local_capabilities(),
            ),
            response_model=ConsumeResponse,
        )
        consumer = await self._engine.consume(transport, ConsumeOptions.from_response(response))

        if self._registry.get_stream(producer_id) is None:
            consumer.close()
            logger.info("consume_discarded", producer_id=producer_id, consumer_id=consumer.id)
            return None

        self._consumer_map.put(consumer.id, producer_id)
        self._consumer_handles[consumer.id] = consumer
        self._registry.attach_track(producer_id, consumer.track, consumer.kind)
        self._publish()

        # Consumers start paused server-side
        await self._channel.notify(
            SignalEvent.RESUME_CONSUMER, ConsumerRef(consumer_id=consumer.id)
        )
        return consumer

    def _release_consumers_of(self, producer_id: str) -> None:
        for consumer_id in self._consumer_map.pop_producer(producer_id):
            handle = self._consumer_handles.pop(consumer_id, None)
            if handle is not None:
                handle.close()

    # -------------------------------------------------------------------------
    # Event reconciliation
    # -------------------------------------------------------------------------

    def _parse(self, model: type[M], data: Any, event: str) -> M | None:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            record_error("signaling", "invalid_push")
            logger.warning("push_payload_invalid", signal_event=event, errors=e.error_count())
            return None

    def _announce(self, producer: ProducerInfo) -> None:
        self._registry.announce_stream(
            producer.producer_id,
            producer.owner_id,
            producer.kind,
            paused=producer.paused,
            is_screen_share=producer.is_screen_share,
        )

    def handle_peer_joined(self, data: Any) -> None:
        event = self._parse(PeerEvent, data, SignalEvent.PEER_JOINED)
        if event is None:
            return
        self._registry.upsert_peer(event.peer_id)
        self._publish()

    def handle_peer_left(self, data: Any) -> None:
        event = self._parse(PeerEvent, data, SignalEvent.PEER_LEAVE)
        if event is None:
            return
        for stream in self._registry.remove_peer(event.peer_id):
            self._release_consumers_of(stream.producer_id)
        self._publish()

    def handle_new_producer(self, data: Any) -> None:
        producer = self._parse(ProducerInfo, data, SignalEvent.NEW_PRODUCER)
        if producer is None:
            return
        self._announce(producer)
        self._publish()
        # Before the receive transport exists the join picks it up
        if self._recv_transport is not None:
            self._scope.spawn(
                self.consume_stream(producer.producer_id),
                name=f"consume:{producer.producer_id}",
            )

    def handle_consumer_closed(self, data: Any) -> None:
        event = self._parse(ConsumerRef, data, SignalEvent.CONSUMER_CLOSED)
        if event is None:
            return
        producer_id = self._consumer_map.pop(event.consumer_id)
        if producer_id is None:
            logger.debug("consumer_closed_unknown", consumer_id=event.consumer_id)
            return
        handle = self._consumer_handles.pop(event.consumer_id, None)
        if handle is not None:
            handle.close()
        self._registry.remove_stream(producer_id)
        self._publish()

    def handle_producer_paused(self, data: Any) -> None:
        self._set_remote_paused(data, True, SignalEvent.PRODUCER_PAUSED)

    def handle_producer_resumed(self, data: Any) -> None:
        self._set_remote_paused(data, False, SignalEvent.PRODUCER_RESUMED)

    def _set_remote_paused(self, data: Any, paused: bool, event_name: str) -> None:
        event = self._parse(ProducerStateEvent, data, event_name)
        if event is None:
            return
        if self._registry.set_paused(event.producer_id, paused, event.owner_id, event.kind):
            self._publish()

    def handle_active_speaker(self, data: Any) -> None:
        try:
            levels = parse_active_speakers(data)
        except ValidationError as e:
            record_error("signaling", "invalid_push")
            logger.warning(
                "push_payload_invalid",
                signal_event=SignalEvent.ACTIVE_SPEAKER,
                errors=e.error_count(),
            )
            return

        mic = self._producers.get(MediaSource.MIC)
        local_volume = self._local.volume
        for level in levels:
            volume = level_to_volume(level.level_db)
            if mic is not None and level.producer_id == mic.id:
                local_volume = volume
            else:
                self._registry.set_volume(level.producer_id, volume)

        if local_volume != self._local.volume:
            self._local = replace(self._local, volume=local_volume)
        self._publish()

    def handle_producer_score(self, data: Any) -> None:
        event = self._parse(ProducerScoreEvent, data, SignalEvent.PRODUCER_SCORE)
        if event is None or event.first_score is None:
            return
        if self._registry.set_network_score(event.producer_id, clamp_score(event.first_score)):
            self._publish()

    # -------------------------------------------------------------------------
    # Local media
    # -------------------------------------------------------------------------

    async def start_local_media(self, want_camera: bool, want_mic: bool) -> LocalMediaState:
        """Start publishing local media.

        The microphone producer is always created; it starts paused when
        want_mic is False. A capture or publish failure rolls back only the
        affected flag.

        Raises:
            TransportUnavailableError: If the send transport does not exist
        """
        self._require_send_transport()
        async with self._media_lock:
            if want_camera:
                await self._publish_camera()
            await self._publish_microphone(muted=not want_mic)
            return self._local

    async def toggle_camera(self) -> bool:
        """Turn the camera on or off. Returns the new camera_open flag.

        Raises:
            TransportUnavailableError: If the send transport does not exist
        """
        self._require_send_transport()
        async with self._media_lock:
            if not self._local.camera_open:
                return await self._publish_camera()

            self._set_local(camera_open=False)
            producer = self._producers.get(MediaSource.WEBCAM)
            if producer is not None and not producer.closed:
                producer.pause()
                await self._notify_quietly(
                    SignalEvent.PAUSE_PRODUCER, ProducerRef(producer_id=producer.id)
                )
            self._capture.close_camera()
            return False

    async def toggle_mic(self) -> bool:
        """Mute or unmute. Returns the new mic_open flag.

        Creates the producer lazily when an earlier capture attempt failed.

        Raises:
            TransportUnavailableError: If the send transport does not exist
        """
        self._require_send_transport()
        async with self._media_lock:
            producer = self._producers.get(MediaSource.MIC)

            if not self._local.mic_open:
                if producer is None or producer.closed:
                    return await self._publish_microphone(muted=False)
                self._capture.set_microphone_muted(False)
                producer.resume()
                self._set_local(mic_open=True)
                await self._notify_quietly(
                    SignalEvent.RESUME_PRODUCER, ProducerRef(producer_id=producer.id)
                )
                return True

            self._capture.set_microphone_muted(True)
            self._set_local(mic_open=False)
            if producer is not None and not producer.closed:
                producer.pause()
                await self._notify_quietly(
                    SignalEvent.PAUSE_PRODUCER, ProducerRef(producer_id=producer.id)
                )
            return False

    async def toggle_screen_share(self, token: str | None = None) -> bool:
        """Start or stop screen sharing. Returns the new screen_share_open flag.

        Args:
            token: One-shot capture grant, required to start

        Raises:
            TransportUnavailableError: If the send transport does not exist
        """
        async with self._media_lock:
            if self._local.screen_share_open:
                await self._stop_screen_share("user")
                return False

            self._require_send_transport()
            self._set_local(screen_share_open=True)
            try:
                self._platform.set_screen_share_active(True)
                # Give the call indicator time to upgrade before capture starts
                await asyncio.sleep(self._config.screen_share_settle_ms / 1000.0)
                track = await self._capture.open_screen(
                    token or "", on_ended=self._on_screen_capture_ended
                )
                await self._produce(MediaSource.SCREEN, track)
            except RoomClientError as e:
                self._log.local_media_failed("screen", "start", e)
                record_error("capture", type(e).__name__)
                self._release_screen_share()
                return False

            logger.info("screen_share_started")
            return True

    async def flip_camera(self) -> bool:
        """Switch front/back camera. Returns the new front_camera flag.

        Raises:
            CaptureUnavailableError: No alternate camera, or it failed to open
        """
        async with self._media_lock:
            track = await self._capture.flip_camera()
            producer = self._producers.get(MediaSource.WEBCAM)
            if track is not None and producer is not None and not producer.closed:
                await producer.replace_track(track)
            self._set_local(front_camera=self._capture.front_camera)
            return self._local.front_camera

    def switch_audio_output(self, output: AudioOutput | str) -> None:
        self._platform.switch_audio_output(AudioOutput(output))

    async def _publish_camera(self) -> bool:
        self._set_local(camera_open=True)
        try:
            track = await self._capture.open_camera()
            producer = self._producers.get(MediaSource.WEBCAM)
            if producer is None or producer.closed:
                await self._produce(MediaSource.WEBCAM, track)
            else:
                await producer.replace_track(track)
                producer.resume()
                await self._notify_quietly(
                    SignalEvent.RESUME_PRODUCER, ProducerRef(producer_id=producer.id)
                )
        except RoomClientError as e:
            self._log.local_media_failed("camera", "start", e)
            record_error("capture", type(e).__name__)
            self._set_local(camera_open=False)
            self._capture.close_camera()
            return False
        return True

    async def _publish_microphone(self, muted: bool) -> bool:
        self._set_local(mic_open=not muted)
        try:
            track = await self._capture.open_microphone(muted=muted)
            producer = self._producers.get(MediaSource.MIC)
            if producer is None or producer.closed:
                producer = await self._produce(MediaSource.MIC, track)
        except RoomClientError as e:
            self._log.local_media_failed("microphone", "start", e)
            record_error("capture", type(e).__name__)
            self._set_local(mic_open=False)
            self._capture.close_microphone()
            return False

        if muted and not producer.paused:
            producer.pause()
            await self._notify_quietly(SignalEvent.PAUSE_PRODUCER, ProducerRef(producer_id=producer.id))
        elif not muted and producer.paused:
            producer.resume()
            await self._notify_quietly(SignalEvent.RESUME_PRODUCER, ProducerRef(producer_id=producer.id))
        return not muted

    async def _produce(self, source: MediaSource, track) -> ProducerHandle:
        transport = self._require_send_transport()
        producer = await self._engine.produce(
            transport,
            track,
            {"source": source.value},
            on_close=partial(self._on_producer_event, source),
        )
        if self._send_transport is not transport:
            # Session torn down while producing
            producer.close()
            raise TransportUnavailableError(Direction.SEND.value)
        self._producers[source] = producer
        self._publish()
        logger.info("producer_created", source=source.value, producer_id=producer.id)
        return producer

    def _require_send_transport(self) -> TransportHandle:
        transport = self._send_transport
        if transport is None or transport.closed:
            raise TransportUnavailableError(Direction.SEND.value)
        return transport

    def _on_producer_event(self, source: MediaSource, reason: str) -> None:
        # Engine-initiated: transport closed under the producer, or its
        # source track ended
        producer = self._producers.get(source)
        if producer is None:
            return

        if reason == "trackended" and producer.track is not self._capture_track(source):
            # Track was replaced or released on purpose
            return

        logger.info("producer_lost", source=source.value, reason=reason)
        if source is MediaSource.SCREEN:
            self._release_screen_share()
            self._spawn_close_notify(producer)
            return

        self._producers.pop(source, None)
        producer.close()
        if source is MediaSource.WEBCAM:
            self._set_local(camera_open=False)
            self._capture.close_camera()
        else:
            self._set_local(mic_open=False)
            self._capture.close_microphone()
        if reason == "trackended":
            self._spawn_close_notify(producer)

    def _capture_track(self, source: MediaSource):
        if source is MediaSource.WEBCAM:
            return self._capture.camera_track
        if source is MediaSource.MIC:
            return self._capture.microphone_track
        return self._capture.screen_track

    def _on_screen_capture_ended(self) -> None:
        # OS-initiated stop of the capture
        producer = self._release_screen_share()
        logger.info("screen_share_stopped", reason="capture_ended")
        if producer is not None:
            self._spawn_close_notify(producer)

    def _spawn_close_notify(self, producer: ProducerHandle) -> None:
        self._scope.spawn(
            self._notify_quietly(SignalEvent.CLOSE_PRODUCER, ProducerRef(producer_id=producer.id)),
            name=f"close:{producer.id}",
        )

    def _release_screen_share(self) -> ProducerHandle | None:
        """Close the screen producer and capture, clear the flag."""
        producer = self._producers.pop(MediaSource.SCREEN, None)
        if producer is not None:
            producer.close()
        self._capture.close_screen()
        self._platform.set_screen_share_active(False)
        if self._local.screen_share_open or producer is not None:
            self._set_local(screen_share_open=False)
        return producer

    async def _stop_screen_share(self, reason: str) -> None:
        producer = self._release_screen_share()
        logger.info("screen_share_stopped", reason=reason)
        if producer is not None:
            await self._notify_quietly(
                SignalEvent.CLOSE_PRODUCER, ProducerRef(producer_id=producer.id)
            )

    async def _notify_quietly(self, event: str, payload: BaseModel) -> None:
        try:
            await self._channel.notify(event, payload)
        except SignalingError as e:
            record_error("signaling", type(e).__name__)
            logger.warning("notify_failed", signal_event=event, error=str(e))

    # -------------------------------------------------------------------------
    # Leave
    # -------------------------------------------------------------------------

    async def exit_room(self) -> None:
        """Leave the room and reset every piece of session state.

        Safe in any state and when called repeatedly. Never raises; errors
        of individual steps are logged and kept in last_cleanup_errors.
        """
        async with self._leave_lock:
            start = time.perf_counter()
            self._join_latch = False
            was_idle = self._fsm.state is RoomState.IDLE

            if not was_idle and self._fsm.can_transition(RoomState.LEAVING):
                try:
                    await self._fsm.transition_to(RoomState.LEAVING, "exit_room")
                except SessionStateError as e:
                    self._log.cleanup_step_failed("enter_leaving", e)

            errors = await self._teardown("exit")
            self._reset_session()
            self._resolve_join(False)

            if self._fsm.state is RoomState.LEAVING:
                await self._fsm.transition_to(RoomState.IDLE, "exit_complete")

            self._cleanup_errors = errors
            if not was_idle:
                record_leave()
                self._log.room_left(len(errors), (time.perf_counter() - start) * 1000)
            self._log = self._log.bind(None)
            unbind_room()
            self._publish()

    async def _teardown(self, context: str) -> list[Exception]:
        steps: list[tuple[str, Callable[[], Any]]] = [
            ("disconnect_channel", self._channel.disconnect),
            ("stop_screen_share", self._release_screen_share),
            ("close_producers", self._close_producers),
            ("cancel_tasks", self._cancel_membership_tasks),
            ("release_capture", self._capture.dispose),
            ("stop_call", self._platform.stop_call),
            ("dispose_engine", self._dispose_engine),
            ("release_remote_media", self._release_remote_media),
        ]
        errors = await self._run_steps(steps)
        if errors:
            logger.warning("teardown_errors", context=context, count=len(errors))
        return errors

    async def _release_membership_media(self) -> None:
        # Stale media of a membership the server has already dropped
        steps: list[tuple[str, Callable[[], Any]]] = [
            ("stop_screen_share", self._release_screen_share),
            ("close_producers", self._close_producers),
            ("cancel_tasks", self._cancel_membership_tasks),
            ("release_capture", self._capture.dispose),
            ("dispose_engine", self._dispose_engine),
            ("release_remote_media", self._release_remote_media),
        ]
        await self._run_steps(steps)
        self._scope.reopen()
        self._registry.clear()
        self._consumer_map.clear()
        self._local = LocalMediaState()
        self._publish()

    async def _run_steps(self, steps: list[tuple[str, Callable[[], Any]]]) -> list[Exception]:
        errors: list[Exception] = []
        for name, step in steps:
            try:
                result = step()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                errors.append(e)
                record_error("room", "cleanup")
                self._log.cleanup_step_failed(name, e)
        return errors

    def _close_producers(self) -> None:
        producers = list(self._producers.values())
        self._producers.clear()
        failures = []
        for producer in producers:
            try:
                producer.close()
            except Exception as e:
                failures.append(e)
        if failures:
            raise failures[0]

    async def _cancel_membership_tasks(self) -> None:
        await self._scope.cancel_all(self._config.task_cancel_timeout_ms)

    async def _dispose_engine(self) -> None:
        # Never dispose the receive transport under a running consume
        async with self._recv_lock:
            self._send_transport = None
            self._recv_transport = None
            self._engine.dispose()

    def _release_remote_media(self) -> None:
        handles = list(self._consumer_handles.values())
        self._consumer_handles.clear()
        failures = []
        for handle in handles:
            try:
                handle.close()
            except Exception as e:
                failures.append(e)
        if failures:
            raise failures[0]

    def _reset_session(self) -> None:
        self._room_id = None
        self._fsm.room_id = None
        self._local = LocalMediaState()
        self._registry.clear()
        self._consumer_map.clear()
        self._consumer_handles.clear()
        self._consuming.clear()
        self._producers.clear()
        self._send_transport = None
        self._recv_transport = None
        self._join_latch = False
        self._join_task = None
        self._on_success = None
        self._on_error = None

    async def _invoke(self, callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("room_callback_error", error=str(e))
