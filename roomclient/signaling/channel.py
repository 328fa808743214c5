"""Signaling Channel - Socket.IO request/response and push dispatch.

One logical connection to the signaling server carrying:
- Correlated requests (emit with ack, bounded by a per-request deadline)
- Fire-and-forget notifies
- Server pushes, delivered to registered handlers in arrival order

Requests are tracked in a table keyed by a local correlation id. Each entry
holds a future and a timer; the ack resolves the future, the timer rejects
it, and a transport-level disconnect rejects every entry still pending.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, TypeVar

import socketio
from pydantic import BaseModel, ValidationError
from socketio.exceptions import SocketIOError

from roomclient.config.constants import ROOM
from roomclient.exceptions import (
    DecodeError,
    NotConnectedError,
    RequestRejectedError,
    SignalingError,
    SignalingTimeoutError,
)
from roomclient.observability.logging import get_logger
from roomclient.observability.metrics import record_error, record_signaling_request
from roomclient.utils.retry import RetryConfig, RetryExhausted, with_retry

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

EventHandler = Callable[[Any], Any]
LifecycleCallback = Callable[[], Any]


@dataclass
class _PendingRequest:
    """One in-flight request awaiting its ack."""

    operation: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class SignalingChannel:
    """Duplex event channel to the signaling server.

    Usage:
        channel = SignalingChannel("http://localhost:3000")
        channel.on("newProducer", handle_new_producer)
        channel.on_connect(handle_connect)
        await channel.connect()

        info = await channel.request(
            "createWebRtcTransport",
            CreateTransportRequest(sender=True),
            response_model=TransportInfo,
        )
        await channel.notify("resume", ConsumerRef(consumer_id=info.transport_id))

        await channel.disconnect()
    """

    def __init__(
        self,
        url: str,
        path: str = "socket.io",
        request_timeout_s: float = ROOM.REQUEST_TIMEOUT_S,
        reconnection: bool = True,
        retry_config: RetryConfig | None = None,
        client_factory: Callable[[], socketio.AsyncClient] | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            url: Signaling server URL
            path: Socket.IO endpoint path
            request_timeout_s: Deadline for each request's ack
            reconnection: Let the Socket.IO client reconnect after drops
            retry_config: Backoff for the initial connect
            client_factory: Builds the Socket.IO client (tests inject fakes)
        """
        self._url = url
        self._path = path
        self._request_timeout_s = request_timeout_s
        self._reconnection = reconnection
        self._retry_config = retry_config or RetryConfig()
        self._client_factory = client_factory or self._default_client

        self._sio: socketio.AsyncClient | None = None
        self._connected = False

        self._handlers: dict[str, list[EventHandler]] = {}
        self._bound_events: set[str] = set()
        self._connect_callbacks: list[LifecycleCallback] = []
        self._disconnect_callbacks: list[LifecycleCallback] = []

        self._pending: dict[int, _PendingRequest] = {}
        self._request_ids = itertools.count(1)

        self._inbox: asyncio.Queue | None = None
        self._dispatch_task: asyncio.Task | None = None

    def _default_client(self) -> socketio.AsyncClient:
        return socketio.AsyncClient(
            reconnection=self._reconnection,
            logger=False,
            engineio_logger=False,
        )

    @property
    def is_connected(self) -> bool:
        """Whether a transport-level connection is currently up."""
        return self._sio is not None and self._connected

    @property
    def pending_requests(self) -> int:
        """Number of requests awaiting an ack."""
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a push handler (sync or async).

        Handlers for one channel run one at a time, in arrival order.
        """
        self._handlers.setdefault(event, []).append(handler)
        if self._sio is not None:
            self._bind_event(event)

    def on_connect(self, callback: LifecycleCallback) -> None:
        """Register a callback fired on every transport-level connect."""
        self._connect_callbacks.append(callback)

    def on_disconnect(self, callback: LifecycleCallback) -> None:
        """Register a callback fired on every transport-level disconnect."""
        self._disconnect_callbacks.append(callback)

    def _bind_event(self, event: str) -> None:
        if event in self._bound_events or self._sio is None:
            return
        self._sio.on(event, partial(self._enqueue, event))
        self._bound_events.add(event)

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection.

        The first attempt is retried with exponential backoff. After that,
        drops are handled by the Socket.IO client's own reconnection.

        Raises:
            NotConnectedError: If every attempt fails
        """
        if self.is_connected:
            return

        sio = self._client_factory()
        self._sio = sio
        self._bound_events = set()
        sio.on("connect", self._handle_connect)
        sio.on("disconnect", self._handle_disconnect)
        for event in self._handlers:
            self._bind_event(event)

        self._inbox = asyncio.Queue()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._inbox))

        try:
            await with_retry(
                lambda: sio.connect(self._url, socketio_path=self._path),
                config=self._retry_config,
                operation_name="signaling_connect",
            )
        except RetryExhausted as e:
            record_error("signaling", "connect_failed")
            await self._stop_dispatch()
            if self._sio is sio:
                self._sio = None
            raise NotConnectedError(reason=str(e.last_error or e)) from e

        if self._sio is not sio:
            # disconnect() ran while the connect was in progress
            try:
                await sio.disconnect()
            except Exception as e:
                logger.warning("signaling_disconnect_error", error=str(e))
            raise NotConnectedError(reason="disconnected during connect")

        # The connect handler normally flips this; a client that connected
        # without emitting it is still usable.
        self._connected = True
        logger.info("signaling_connected", url=self._url)

    async def disconnect(self) -> None:
        """Deregister all handlers, close the connection, fail pending requests.

        Safe to call repeatedly.
        """
        self._handlers.clear()
        self._connect_callbacks.clear()
        self._disconnect_callbacks.clear()

        sio, self._sio = self._sio, None
        was_connected = self._connected
        self._connected = False
        self._bound_events = set()

        self._reject_pending("disconnected")
        await self._stop_dispatch()

        if sio is not None:
            try:
                await sio.disconnect()
            except Exception as e:
                logger.warning("signaling_disconnect_error", error=str(e))
            if was_connected:
                logger.info("signaling_disconnected", url=self._url)

    async def _handle_connect(self) -> None:
        self._connected = True
        logger.debug("signaling_transport_connected")
        for callback in list(self._connect_callbacks):
            await self._invoke(callback, "connect")

    async def _handle_disconnect(self, *args: Any) -> None:
        # Newer Socket.IO clients pass the disconnect reason
        self._connected = False
        reason = str(args[0]) if args else "connection lost"
        logger.info("signaling_transport_disconnected", reason=reason)
        self._reject_pending(reason)
        for callback in list(self._disconnect_callbacks):
            await self._invoke(callback, "disconnect")

    async def _invoke(self, callback: Callable, name: str) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "signaling_lifecycle_callback_error",
                lifecycle=name,
                error=str(e),
            )

    # -------------------------------------------------------------------------
    # Push dispatch
    # -------------------------------------------------------------------------

    def _enqueue(self, event: str, *args: Any) -> None:
        if self._inbox is None:
            return
        self._inbox.put_nowait((event, args[0] if args else None))

    async def _dispatch_loop(self, inbox: asyncio.Queue) -> None:
        while True:
            event, data = await inbox.get()
            try:
                for handler in list(self._handlers.get(event, ())):
                    try:
                        result = handler(data)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        record_error("signaling", "handler_error")
                        logger.error(
                            "signaling_handler_error",
                            signal_event=event,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
            finally:
                inbox.task_done()
            if self._inbox is not inbox:
                # Stopped from inside a handler
                return

    async def flush_events(self) -> None:
        """Wait until every push received so far has been handled."""
        if self._inbox is not None:
            await self._inbox.join()

    async def _stop_dispatch(self) -> None:
        task, self._dispatch_task = self._dispatch_task, None
        self._inbox = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -------------------------------------------------------------------------
    # Requests and notifies
    # -------------------------------------------------------------------------

    async def request(
        self,
        operation: str,
        payload: BaseModel | dict[str, Any] | None = None,
        response_model: type[M] | None = None,
        timeout_s: float | None = None,
    ) -> M | dict[str, Any]:
        """Send a request and wait for its correlated ack.

        Args:
            operation: Event name
            payload: Request body (models are serialized with camelCase keys)
            response_model: Model the ack is validated against
            timeout_s: Override of the default deadline

        Returns:
            The validated response model, or the raw ack dict

        Raises:
            NotConnectedError: No connection, or it dropped while pending
            SignalingTimeoutError: No ack within the deadline
            DecodeError: Empty ack or ack not matching response_model
            RequestRejectedError: Ack carried an error field
        """
        start = time.perf_counter()
        status = "ok"
        try:
            raw = await self._send_request(operation, payload, timeout_s)
            return self._decode(operation, raw, response_model)
        except SignalingError as e:
            status = _status_for(e)
            record_error("signaling", status)
            logger.warning(
                "signaling_request_failed",
                operation=operation,
                status=status,
                error=str(e),
            )
            raise
        finally:
            record_signaling_request(operation, status, time.perf_counter() - start)

    async def _send_request(
        self,
        operation: str,
        payload: BaseModel | dict[str, Any] | None,
        timeout_s: float | None,
    ) -> Any:
        sio = self._sio
        if sio is None or not self._connected:
            raise NotConnectedError(operation)

        timeout_s = timeout_s or self._request_timeout_s
        loop = asyncio.get_running_loop()
        request_id = next(self._request_ids)
        future = loop.create_future()
        timer = loop.call_later(timeout_s, self._expire, request_id, timeout_s)
        self._pending[request_id] = _PendingRequest(operation, future, timer)

        try:
            try:
                await sio.emit(
                    operation,
                    _to_wire(payload),
                    callback=partial(self._resolve, request_id),
                )
            except SocketIOError as e:
                raise NotConnectedError(operation, reason=str(e)) from e
            return await future
        finally:
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()

    def _resolve(self, request_id: int, *args: Any) -> None:
        entry = self._pending.get(request_id)
        if entry is None or entry.future.done():
            return
        entry.future.set_result(args[0] if args else None)

    def _expire(self, request_id: int, timeout_s: float) -> None:
        entry = self._pending.get(request_id)
        if entry is None or entry.future.done():
            return
        entry.future.set_exception(SignalingTimeoutError(entry.operation, timeout_s))

    def _reject_pending(self, reason: str) -> None:
        for entry in list(self._pending.values()):
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(NotConnectedError(entry.operation, reason=reason))

    def _decode(
        self,
        operation: str,
        raw: Any,
        response_model: type[M] | None,
    ) -> M | dict[str, Any]:
        if raw is None or raw == {}:
            raise DecodeError(operation, "empty response")
        if isinstance(raw, dict) and raw.get("error"):
            raise RequestRejectedError(operation, str(raw["error"]))
        if response_model is None:
            return raw
        try:
            return response_model.model_validate(raw)
        except ValidationError as e:
            raise DecodeError(operation, f"{e.error_count()} validation error(s)") from e

    async def notify(
        self,
        event: str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> None:
        """Send a fire-and-forget event. At most one attempt, no retry.

        Raises:
            NotConnectedError: No active connection
        """
        sio = self._sio
        if sio is None or not self._connected:
            raise NotConnectedError(event)
        try:
            await sio.emit(event, _to_wire(payload))
        except SocketIOError as e:
            raise NotConnectedError(event, reason=str(e)) from e


def _to_wire(payload: BaseModel | dict[str, Any] | None) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(by_alias=True, exclude_none=True)
    return payload


def _status_for(error: SignalingError) -> str:
    if isinstance(error, SignalingTimeoutError):
        return "timeout"
    if isinstance(error, DecodeError):
        return "decode_error"
    if isinstance(error, RequestRejectedError):
        return "rejected"
    return "not_connected"
