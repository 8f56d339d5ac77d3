"""
Delivery tracking state machine for the driver app.

    IDLE -> VALIDATING -> ACTIVE <-> PAUSED
    ACTIVE|PAUSED -> FINISHING -> IDLE      (order marked delivered)
    ACTIVE|PAUSED -> STOPPED -> IDLE        (local escape, server untouched)
    VALIDATING -> IDLE                      (invalid order or transport failure)

While ACTIVE a single sampling task takes a fix, pushes it to the server and
sleeps until the next interval boundary. Ticks never overlap: a tick that
overruns the interval skips the missed boundaries. Pausing or stopping only
cancels the schedule; a tick already in flight is left to complete.

Location push failures never stop tracking. Samples that could not be sent
for lack of a connection go to the offline queue, which is drained in the
background once the server answers again. Samples the server refuses are
dropped.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from icap.mobile.errors import (
    GeolocationError, InvalidTransitionError, NetworkError, OrderNotFoundError,
    OrderRejectedError, RequestRejectedError, TrackerError, TransportError, UserInputError
)
from icap.mobile.models import HealthStatus, LocationSample, TrackingSession
from icap.mobile.offline_queue import DrainResult, OfflineQueue
from icap.mobile.reliability import CircuitBreaker
from icap.mobile.sampler import LocationSampler, PositionProvider
from icap.mobile.settings import TrackerSettings, load_settings, save_settings
from icap.mobile.store import LocalStore, STATE_KEY
from icap.mobile.transport import TransportClient

logger = logging.getLogger(__name__)

FINISH_PROMPT = "Confirmar finalização da entrega?"
STOP_PROMPT = "Parar rastreamento? Esta ação não pode ser desfeita."


class TrackingState(str, enum.Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    FINISHING = "FINISHING"
    STOPPED = "STOPPED"


class EventKind(str, enum.Enum):
    TRACKING_STARTED = "TRACKING_STARTED"
    TRACKING_RESTORED = "TRACKING_RESTORED"
    TRACKING_PAUSED = "TRACKING_PAUSED"
    TRACKING_RESUMED = "TRACKING_RESUMED"
    TRACKING_STOPPED = "TRACKING_STOPPED"
    DELIVERY_FINISHED = "DELIVERY_FINISHED"
    LOCATION_SENT = "LOCATION_SENT"
    LOCATION_QUEUED = "LOCATION_QUEUED"
    LOCATION_DROPPED = "LOCATION_DROPPED"
    GEOLOCATION_FAILED = "GEOLOCATION_FAILED"
    CONNECTIVITY_CHANGED = "CONNECTIVITY_CHANGED"
    SYNC_COMPLETED = "SYNC_COMPLETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class TrackerEvent:
    """User-facing notification for the UI layer."""
    kind: EventKind
    message: str
    level: str = "info"  # info, success, warning, error


Listener = Callable[[TrackerEvent], None]
ConfirmCallback = Callable[[str], Awaitable[bool]]


async def _always_confirm(prompt: str) -> bool:
    return True


class DeliveryStateMachine:

    def __init__(
        self,
        transport: TransportClient,
        sampler: LocationSampler,
        queue: OfflineQueue,
        store: LocalStore,
        settings: Optional[TrackerSettings] = None,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.transport = transport
        self.sampler = sampler
        self.queue = queue
        self.store = store
        self.settings = settings or TrackerSettings()
        self.confirm = confirm or _always_confirm

        self._state = TrackingState.IDLE
        self._session: Optional[TrackingSession] = None
        self._sampling_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._sync_task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []
        self.connectivity_ok = True

    @classmethod
    def create(
        cls,
        provider: PositionProvider,
        settings: Optional[TrackerSettings] = None,
        store: Optional[LocalStore] = None,
        client=None,
        confirm: Optional[ConfirmCallback] = None,
    ) -> "DeliveryStateMachine":
        """Wire a state machine and its collaborators from settings."""
        settings = settings or TrackerSettings()
        store = store or LocalStore(settings.store_path)
        settings = load_settings(store, settings)

        breaker = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout,
            tracked=(NetworkError,),
        )
        transport = TransportClient(
            settings.server_url,
            timeout=settings.request_timeout,
            client=client,
            breaker=breaker,
        )
        sampler = LocationSampler(
            provider,
            high_accuracy=settings.high_accuracy,
            timeout_ms=settings.geolocation_timeout,
            max_sample_age_ms=settings.max_sample_age,
        )
        return cls(transport, sampler, OfflineQueue(store), store, settings, confirm)

    # Introspection

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def is_sampling(self) -> bool:
        return self._sampling_task is not None and not self._sampling_task.done()

    @property
    def pending_count(self) -> int:
        return len(self.queue)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, kind: EventKind, message: str, level: str = "info") -> None:
        event = TrackerEvent(kind, message, level)
        for listener in list(self._listeners):
            listener(event)

    def _require(self, *states: TrackingState) -> None:
        if self._state not in states:
            raise InvalidTransitionError(
                f"Operação inválida no estado {self._state.value}"
            )

    # Lifecycle

    async def start(self, order_code: str) -> TrackingSession:
        """
        Validate the order, mark it in transit and begin sampling.

        Raises:
            UserInputError: blank code (no network call is made)
            OrderRejectedError: the server does not accept the code
            TransportError: validation or the status update failed
        """
        code = (order_code or "").strip()
        if not code:
            self._emit(EventKind.ERROR, "Digite o código do pedido", "error")
            raise UserInputError("Digite o código do pedido")

        self._require(TrackingState.IDLE)
        self._state = TrackingState.VALIDATING

        try:
            result = await self.transport.validate_order(code)
            if not result.valid:
                raise OrderRejectedError(code, result.message)
            await self.transport.update_status(code, self.settings.in_transit_status)
        except TrackerError as exc:
            self._state = TrackingState.IDLE
            if isinstance(exc, NetworkError):
                self._set_connectivity(False)
            logger.warning("Tracking not started", extra={"order_code": code, "reason": str(exc)})
            self._emit(EventKind.ERROR, str(exc) or "Erro ao iniciar rastreamento", "error")
            raise
        except Exception:
            self._state = TrackingState.IDLE
            logger.exception("Tracking not started", extra={"order_code": code})
            raise

        self._session = TrackingSession(
            order_id=code,
            order_status=self.settings.in_transit_status,
            details=result.details,
            buffer_size=self.settings.display_buffer_size,
        )
        self._state = TrackingState.ACTIVE
        self._save_state()
        self._schedule(immediate=True)

        logger.info("Tracking started", extra={"order_code": code, "interval_ms": self.settings.update_interval})
        self._emit(EventKind.TRACKING_STARTED, f"Rastreamento iniciado para pedido {code}", "success")
        return self._session

    def pause(self) -> None:
        self._require(TrackingState.ACTIVE)
        self._cancel_schedule()
        self._session.paused = True
        self._state = TrackingState.PAUSED
        self._save_state()
        self._emit(EventKind.TRACKING_PAUSED, "Rastreamento pausado", "warning")

    def resume(self) -> None:
        """Resume sampling; the first fix comes one full interval later."""
        self._require(TrackingState.PAUSED)
        self._session.paused = False
        self._state = TrackingState.ACTIVE
        self._save_state()
        self._schedule(immediate=False)
        self._emit(EventKind.TRACKING_RESUMED, "Rastreamento retomado", "success")

    def toggle_pause(self) -> TrackingState:
        if self._state == TrackingState.ACTIVE:
            self.pause()
        else:
            self.resume()
        return self._state

    async def finish(self) -> bool:
        """
        Mark the order delivered and end the session.

        Returns False when the driver does not confirm. If the status update
        fails the session is left as it was and the error is raised.
        """
        self._require(TrackingState.ACTIVE, TrackingState.PAUSED)
        if not await self.confirm(FINISH_PROMPT):
            return False
        self._require(TrackingState.ACTIVE, TrackingState.PAUSED)

        previous = self._state
        session = self._session
        self._cancel_schedule()
        self._state = TrackingState.FINISHING

        try:
            await self.transport.update_status(session.order_id, self.settings.delivered_status)
        except TransportError as exc:
            self._restore(previous)
            if isinstance(exc, NetworkError):
                self._set_connectivity(False)
            logger.warning("Delivery not finished", extra={"order_code": session.order_id, "reason": str(exc)})
            self._emit(EventKind.ERROR, "Erro ao finalizar entrega", "error")
            raise
        except Exception:
            self._restore(previous)
            logger.exception("Delivery not finished", extra={"order_code": session.order_id})
            raise

        self._end_session()
        logger.info("Delivery finished", extra={"order_code": session.order_id})
        self._emit(EventKind.DELIVERY_FINISHED, "Entrega finalizada com sucesso!", "success")
        return True

    def _restore(self, previous: TrackingState) -> None:
        self._state = previous
        if previous == TrackingState.ACTIVE:
            self._schedule(immediate=False)

    async def stop(self) -> bool:
        """
        Discard the session without telling the server.

        The order keeps whatever status it had; use `finish` to deliver.
        """
        self._require(TrackingState.ACTIVE, TrackingState.PAUSED)
        if not await self.confirm(STOP_PROMPT):
            return False
        self._require(TrackingState.ACTIVE, TrackingState.PAUSED)

        order_code = self._session.order_id
        self._state = TrackingState.STOPPED
        self._end_session()
        logger.info("Tracking stopped", extra={"order_code": order_code})
        self._emit(EventKind.TRACKING_STOPPED, "Rastreamento interrompido", "success")
        return True

    def restore(self) -> Optional[TrackingSession]:
        """Resume a session persisted by a previous run of the app."""
        self._require(TrackingState.IDLE)
        record = self.store.get(STATE_KEY)
        if not record or not record.get("isTracking") or not record.get("currentOrderId"):
            return None

        try:
            session = TrackingSession.from_record(record, buffer_size=self.settings.display_buffer_size)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable tracking state", extra={"error": str(exc)})
            self.store.remove(STATE_KEY)
            return None

        self._session = session
        if session.paused:
            self._state = TrackingState.PAUSED
        else:
            self._state = TrackingState.ACTIVE
            self._schedule(immediate=True)

        logger.info("Tracking restored", extra={"order_code": session.order_id, "paused": session.paused})
        self._emit(EventKind.TRACKING_RESTORED, "Rastreamento restaurado", "success")
        return session

    def _end_session(self) -> None:
        self._cancel_schedule()
        self._session = None
        self.store.remove(STATE_KEY)
        self._state = TrackingState.IDLE

    def _save_state(self) -> None:
        if self._session is not None:
            self.store.set(STATE_KEY, self._session.to_record())

    # Settings

    def set_update_interval(self, interval_ms: int) -> None:
        """Change the sampling interval, rescheduling a running session."""
        if interval_ms <= 0:
            raise UserInputError("Intervalo de atualização inválido")
        self.settings = self.settings.model_copy(update={"update_interval": int(interval_ms)})
        save_settings(self.store, self.settings)
        if self._state == TrackingState.ACTIVE:
            self._schedule(immediate=False)

    def set_server_url(self, server_url: str) -> None:
        url = (server_url or "").strip()
        if not url:
            raise UserInputError("Endereço do servidor inválido")
        self.settings = self.settings.model_copy(update={"server_url": url})
        save_settings(self.store, self.settings)
        self.transport.set_base_url(url)

    # Sampling

    @property
    def _interval_seconds(self) -> float:
        return self.settings.update_interval / 1000

    def _schedule(self, immediate: bool) -> None:
        """(Re)start the periodic schedule, optionally with a fix right away."""
        self._cancel_schedule()
        if immediate:
            self._launch_tick()
        self._sampling_task = asyncio.get_running_loop().create_task(self._run_sampling())

    def _cancel_schedule(self) -> None:
        if self._sampling_task is not None and not self._sampling_task.done():
            self._sampling_task.cancel()
        self._sampling_task = None

    def _launch_tick(self) -> bool:
        """Start a tick unless one is still in flight."""
        if self._inflight is not None and not self._inflight.done():
            return False
        self._inflight = asyncio.get_running_loop().create_task(self.tick())
        self._inflight.add_done_callback(self._log_task_failure)
        return True

    async def _run_sampling(self) -> None:
        loop = asyncio.get_running_loop()
        delay = self._interval_seconds

        while True:
            await asyncio.sleep(delay)
            interval = self._interval_seconds
            started = loop.time()

            if self._launch_tick():
                # asyncio.wait leaves the tick running if this schedule is cancelled
                await asyncio.wait({self._inflight})

            elapsed = loop.time() - started
            delay = interval - (elapsed % interval)

    async def tick(self) -> Optional[LocationSample]:
        """Take one fix and deliver it. Does nothing unless ACTIVE."""
        session = self._session
        if session is None or self._state != TrackingState.ACTIVE:
            return None

        try:
            sample = await self.sampler.sample(session.order_id)
        except GeolocationError as exc:
            logger.warning(
                "Geolocation failed",
                extra={"order_code": session.order_id, "kind": exc.kind.name, "detail": exc.detail}
            )
            self._emit(EventKind.GEOLOCATION_FAILED, exc.user_message, "error")
            return None

        await self._deliver(session, sample)
        return sample

    async def _deliver(self, session: TrackingSession, sample: LocationSample) -> None:
        try:
            await self.transport.send_location(sample)
        except OrderNotFoundError:
            logger.warning(
                "Order unknown to server, location dropped",
                extra={"order_code": sample.order_id, "sample_id": sample.sample_id}
            )
            self._emit(EventKind.LOCATION_DROPPED, "Pedido não encontrado no servidor", "warning")
            return
        except RequestRejectedError as exc:
            # Resending a refused sample would only refuse it again
            logger.warning(
                "Location rejected by server, dropped",
                extra={
                    "order_code": sample.order_id,
                    "sample_id": sample.sample_id,
                    "error_code": exc.error_code,
                    "reason": str(exc)
                }
            )
            self._emit(EventKind.LOCATION_DROPPED, "Localização recusada pelo servidor", "warning")
            return
        except NetworkError as exc:
            logger.info("Location push failed, queued", extra={"order_code": sample.order_id, "reason": str(exc)})
            await self.queue.enqueue(sample)
            self._set_connectivity(False)
            self._emit(
                EventKind.LOCATION_QUEUED,
                "Sem conexão - dados serão sincronizados quando voltar online",
                "warning"
            )
            return

        self._set_connectivity(True)
        if self._session is session:
            session.record(sample)
            self._save_state()
        self._emit(EventKind.LOCATION_SENT, f"{sample.latitude:.6f}, {sample.longitude:.6f}")

        if len(self.queue):
            self._start_background_sync()

    # Connectivity and sync

    def _set_connectivity(self, ok: bool) -> None:
        if ok == self.connectivity_ok:
            return
        self.connectivity_ok = ok
        if ok:
            self._emit(EventKind.CONNECTIVITY_CHANGED, "Conexão restaurada", "success")
        else:
            self._emit(EventKind.CONNECTIVITY_CHANGED, "Sem conexão", "warning")

    def _start_background_sync(self) -> None:
        if self._sync_task is not None and not self._sync_task.done():
            return
        self._sync_task = asyncio.get_running_loop().create_task(self.sync_pending())
        self._sync_task.add_done_callback(self._log_task_failure)

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Tracker task failed", exc_info=task.exception())

    async def sync_pending(self) -> DrainResult:
        """Resend queued locations now."""
        result = await self.queue.drain(self.transport)
        if result.interrupted:
            self._set_connectivity(False)
        elif result.delivered:
            self._set_connectivity(True)
        if result.delivered or result.dropped:
            self._emit(
                EventKind.SYNC_COMPLETED,
                f"{result.delivered} localizações sincronizadas, {result.remaining} pendentes",
                "success" if not result.remaining else "warning"
            )
        return result

    async def test_connection(self) -> HealthStatus:
        """Probe the server, update the indicator and sync if it answers."""
        health = await self.transport.health_check()
        self._set_connectivity(health.ok)
        if health.ok:
            self._emit(EventKind.CONNECTIVITY_CHANGED, "Conexão OK", "success")
            if len(self.queue):
                self._start_background_sync()
        else:
            self._emit(EventKind.CONNECTIVITY_CHANGED, "Falha na conexão", "error")
        return health

    async def settle(self) -> None:
        """Wait for the tick and the background sync currently in flight."""
        if self._inflight is not None:
            await asyncio.wait({self._inflight})
        # A finished tick may just have started a sync
        if self._sync_task is not None:
            await asyncio.wait({self._sync_task})

    async def shutdown(self) -> None:
        """Stop scheduling, let in-flight work complete and close the transport."""
        self._cancel_schedule()
        await self.settle()
        await self.transport.aclose()
