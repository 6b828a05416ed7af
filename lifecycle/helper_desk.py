"""
Purpose: The helper side of a help request.
What it does:
- go_online / go_offline (position from a location source, fallback coordinate otherwise)
- Inbox of incoming requests: newest first, one entry per request id
- accept_request / reject_request for inbox entries
- confirm_redirect starts navigation: active job, cancellation window and a
  LocationStreamer bound to the request id
- reject_active(reason) while the window is open; request_cancelled ends the job

Rule: status changes go through state_machines.helper_state; emits that are
dropped leave the desk unchanged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional, Set

from help_requests.models import CancelInitiator, CancellationRecord, CancellationWindow, LngLat
from realtime.channel import ChannelStatus
from realtime.events import (
    CancelWindowExpired,
    ConfirmRedirect,
    EventDecodeError,
    Events,
    NewRequest,
    RequestCancelled,
    RequestLocked,
    ServerError,
    decode_event,
    position_payload,
    reject_request_payload,
    request_id_payload,
)
from realtime.scheduling import Handle, HandleGroup, LoopScheduler
from tracking.countdown import CountdownTimer
from tracking.location_sources import resolve_position
from tracking.location_streamer import LocationSample, LocationStreamer

from .navigation import helper_screen_for
from .notices import NoticeBoard
from .policy import TrackingPolicy, default_tracking_policy
from .state_machines import helper_state
from .state_machines.helper_state import HelperStateException, HelperStatus

logger = logging.getLogger(__name__)

HELPER_EVENTS = frozenset({
    Events.NEW_REQUEST,
    Events.REQUEST_LOCKED,
    Events.CONFIRM_REDIRECT,
    Events.REQUEST_CANCELLED,
    Events.CANCEL_WINDOW_EXPIRED,
    Events.ERROR,
})


@dataclass
class HelperJob:
    request_id: str
    seeker_location: Optional[LngLat] = None
    seeker_address: str = "Seeker location"
    window: Optional[CancellationWindow] = None


class HelperDesk:
    def __init__(
        self,
        channel,
        *,
        location_source=None,
        policy: Optional[TrackingPolicy] = None,
        clock: Callable[[], float] = time.time,
        scheduler=None,
        notices: Optional[NoticeBoard] = None,
        estimator=None,
    ):
        self.channel = channel
        self.location_source = location_source
        self.policy = policy or default_tracking_policy()
        self.clock = clock
        self.scheduler = scheduler or LoopScheduler()
        self.notices = notices or NoticeBoard(lifetime=self.policy.notice_lifetime_seconds)
        self.estimator = estimator

        self.status = HelperStatus.OFFLINE
        self.inbox: List[NewRequest] = []
        self.pending: Set[str] = set()
        self.job: Optional[HelperJob] = None
        self.window_timer: Optional[CountdownTimer] = None
        self.streamer: Optional[LocationStreamer] = None
        self.position: Optional[LngLat] = None
        self.last_cancellation: Optional[CancellationRecord] = None

        self._listeners: List[Callable[[HelperDesk], None]] = []
        self._subscriptions = HandleGroup()
        self._tracking = HandleGroup()
        self._state_subscription: Optional[Handle] = None
        self._bound_generation: Optional[int] = None

        self._handlers = {
            NewRequest: self._on_new_request,
            RequestLocked: self._on_request_locked,
            ConfirmRedirect: self._on_confirm_redirect,
            RequestCancelled: self._on_request_cancelled,
            CancelWindowExpired: self._on_cancel_window_expired,
            ServerError: self._on_server_error,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def screen(self) -> str:
        return helper_screen_for(self.status, self.job.request_id if self.job else None)

    @property
    def can_reject(self) -> bool:
        return (
            self.job is not None
            and self.job.window is not None
            and self.job.window.is_open(self.clock())
        )

    @property
    def window_remaining(self) -> Optional[int]:
        if self.window_timer is None:
            return None
        return self.window_timer.remaining_seconds

    def subscribe(self, listener: Callable[[HelperDesk], None]) -> Handle:
        self._listeners.append(listener)

        def _release():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Handle(_release)

    # ------------------------------------------------------------------
    # Channel binding
    # ------------------------------------------------------------------

    def attach(self) -> Handle:
        if self._state_subscription is None:
            self._state_subscription = self.channel.subscribe_state(self._on_channel_status)
        self._on_channel_status(self.channel.status)
        return Handle(self.detach)

    def detach(self) -> None:
        if self._state_subscription is not None:
            self._state_subscription.cancel()
            self._state_subscription = None
        self._subscriptions.cancel_all()
        self._bound_generation = None

    def _on_channel_status(self, status: ChannelStatus) -> None:
        if self.channel.has_channel and self._bound_generation != self.channel.generation:
            self._subscriptions.cancel_all()
            for name in sorted(HELPER_EVENTS):
                self._subscriptions.add(self.channel.on(name, partial(self._receive, name)))
            self._bound_generation = self.channel.generation

    def _receive(self, name: str, payload) -> None:
        try:
            event = decode_event(name, payload)
        except EventDecodeError as exc:
            logger.warning("Ignoring malformed %s payload: %s", name, exc)
            return
        self.handle_event(event)

    def handle_event(self, event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("No helper handling for %s", type(event).__name__)
            return
        try:
            handler(event)
        except HelperStateException as exc:
            logger.debug("Ignoring %s: %s", type(event).__name__, exc)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def go_online(self, coordinate: Optional[LngLat] = None) -> bool:
        new_status = helper_state.go_online(self.status)
        if coordinate is None:
            coordinate = await resolve_position(
                self.location_source,
                timeout=self.policy.location_timeout_seconds,
                fallback=self.policy.fallback_coordinate,
            )
        if not self.channel.emit(Events.GO_ONLINE, position_payload(coordinate)):
            self.notices.warning("Connection lost. Please refresh.")
            return False
        self.status = new_status
        self.position = coordinate
        logger.info("Helper online at %s", coordinate)
        self.notices.success("You are now online!")
        self._changed()
        return True

    def go_offline(self) -> bool:
        new_status = helper_state.go_offline(self.status)
        if not self.channel.emit(Events.GO_OFFLINE, {}):
            self.notices.warning("Connection lost. Please refresh.")
            return False
        self.status = new_status
        self.inbox.clear()
        self.pending.clear()
        logger.info("Helper offline")
        self.notices.info("You are now offline")
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def _find(self, request_id: str) -> Optional[NewRequest]:
        for item in self.inbox:
            if item.request_id == request_id:
                return item
        return None

    def accept_request(self, request_id: str) -> bool:
        helper_state.accept_offer(self.status)
        if self._find(request_id) is None:
            raise HelperStateException(f"Request {request_id} is not in the inbox")
        if not self.channel.emit(Events.ACCEPT_REQUEST, request_id_payload(request_id)):
            self.notices.warning("Connection lost. Please refresh.")
            return False
        self.pending.add(request_id)
        self._changed()
        return True

    def reject_request(self, request_id: str) -> bool:
        if self._find(request_id) is None:
            raise HelperStateException(f"Request {request_id} is not in the inbox")
        if not self.channel.emit(Events.REJECT_REQUEST, reject_request_payload(request_id)):
            self.notices.warning("Connection lost. Please refresh.")
            return False
        self._remove(request_id)
        self._changed()
        return True

    def _remove(self, request_id: str) -> None:
        self.inbox = [item for item in self.inbox if item.request_id != request_id]
        self.pending.discard(request_id)

    def _on_new_request(self, event: NewRequest) -> None:
        if self.status is not HelperStatus.ONLINE:
            raise HelperStateException(f"Not taking requests while {self.status.value}")
        if self._find(event.request_id) is not None:
            logger.debug("Duplicate new_request %s", event.request_id)
            return
        self.inbox.insert(0, event)
        self.notices.info(f"New request: {event.category} (${event.budget:g})")
        self._changed()

    def _on_request_locked(self, event: RequestLocked) -> None:
        self._remove(event.request_id)
        self.notices.success(event.message)
        self._changed()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _on_confirm_redirect(self, event: ConfirmRedirect) -> None:
        self.status = helper_state.start_navigation(self.status)
        self._remove(event.request_id)
        self.job = HelperJob(
            request_id=event.request_id,
            seeker_location=event.seeker_location,
            seeker_address=event.seeker_address or "Seeker location",
        )
        if event.cancel_window_expires_at is not None:
            self._open_window(event.cancel_window_expires_at)
        self.last_cancellation = None
        self._start_streaming(event.request_id)
        logger.info("Navigating to request %s", event.request_id)
        self._changed()

    def _start_streaming(self, request_id: str) -> None:
        if self.location_source is None:
            logger.warning("No location source; request %s will not receive live positions", request_id)
            return
        self.streamer = LocationStreamer(
            self.location_source,
            self.channel,
            request_id=request_id,
            interval_seconds=self.policy.location_emit_interval_seconds,
            clock=self.clock,
        )
        self._tracking.add(self.streamer.on_sample(self._on_own_position))
        self._tracking.add(self.streamer.start())

    def _on_own_position(self, sample: LocationSample) -> None:
        self.position = sample.coordinate
        if self.estimator is not None and self.job is not None:
            self.estimator.request(self.position, self.job.seeker_location, participants=(self.job.request_id,))

    def reject_active(self, reason: str) -> bool:
        """
        Helper backs out of the active job. Only inside the cancellation window
        and only with a reason.
        """
        if self.job is None:
            raise HelperStateException("No active job to reject")
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A reason is required to reject an active request")
        if not self.can_reject:
            raise HelperStateException("Cancellation window has closed")
        if not self.channel.emit(Events.REJECT_REQUEST, reject_request_payload(self.job.request_id, reason)):
            self.notices.warning("Connection lost. Please refresh.")
            return False
        self._end_job(CancellationRecord(reason, CancelInitiator.HELPER))
        return True

    def finish_job(self) -> None:
        if self.job is None:
            raise HelperStateException("No active job to finish")
        self.notices.success("Job completed")
        self._end_job(None)

    def _on_request_cancelled(self, event: RequestCancelled) -> None:
        if self.job is None:
            raise HelperStateException("No active job")
        if event.request_id is not None and event.request_id != self.job.request_id:
            raise HelperStateException(f"Stale cancel for {event.request_id} (active: {self.job.request_id})")
        self.notices.error(event.reason)
        self._end_job(CancellationRecord(event.reason, event.rejected_by))

    def _on_cancel_window_expired(self, event: CancelWindowExpired) -> None:
        if self.job is None or self.job.window is None:
            return
        if event.request_id is not None and event.request_id != self.job.request_id:
            return
        self.job.window = CancellationWindow(min(self.job.window.expires_at, self.clock()))
        if self.window_timer is not None:
            self.window_timer.expire_now()
        self._changed()

    def _on_server_error(self, event: ServerError) -> None:
        self.notices.error(event.message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_window(self, expires_at: float) -> None:
        self.job.window = CancellationWindow(expires_at)
        self.window_timer = CountdownTimer(
            expires_at,
            clock=self.clock,
            scheduler=self.scheduler,
            tick_interval=self.policy.countdown_tick_seconds,
            on_expired=self._changed,
        )
        self.window_timer.start()

    def _end_job(self, record: Optional[CancellationRecord]) -> None:
        request_id = self.job.request_id
        self._tracking.cancel_all()
        self.streamer = None
        if self.window_timer is not None:
            self.window_timer.stop()
            self.window_timer = None
        if self.estimator is not None:
            self.estimator.close()
        self.job = None
        self.status = helper_state.end_navigation(self.status)
        self.last_cancellation = record
        logger.info("Job %s ended (%s)", request_id, record.initiator.value if record else "completed")
        self._changed()

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)
