"""
Purpose: The seeker-side request lifecycle (the "glue" and single state owner).
What it does:
Consumes channel events, user actions and live helper positions; owns the one
active Request, its CancellationWindow and the session snapshot.

   Idle -> Searching -> HelperFound -> Confirming -> EnRoute -> Completed
   Searching / HelperFound / Confirming / EnRoute -> Cancelled
   Searching / HelperFound -> Expired

Rules:
- Every status change goes through state_machines.request_state.
- Events carrying another request's id are ignored.
- One confirm in flight at a time; a server error while Confirming rolls back.
- Snapshot written on every non-terminal change, cleared on every terminal one;
  a cancellation leaves only its outcome, read once by restore().
- A change of authenticated identity drops the request and the previous
  identity's snapshot.
- User actions whose emit is dropped leave the status untouched.
"""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import Callable, List, Optional

from help_requests.models import (
    WINDOW_STATUSES,
    CancelInitiator,
    CancellationRecord,
    CancellationWindow,
    LngLat,
    Request,
    RequestStatus,
)
from help_requests.snapshot_store import SessionSnapshot, SessionSnapshotStore, scope_for
from realtime.channel import ChannelStatus
from realtime.events import (
    SERVER_EVENTS,
    CancelWindowExpired,
    ConfirmRedirect,
    EventDecodeError,
    Events,
    HelperFound,
    HelperOnTheWay,
    LocationUpdate,
    RequestCancelled,
    RequestExpired,
    SearchStarted,
    ServerError,
    decode_event,
    request_id_payload,
    search_help_payload,
)
from realtime.scheduling import Handle, HandleGroup, LoopScheduler
from tracking.countdown import CountdownTimer
from tracking.location_sources import resolve_position

from .navigation import screen_for
from .notices import NoticeBoard
from .policy import TrackingPolicy, default_tracking_policy
from .state_machines.request_state import RequestStateException, Trigger, apply_transition, can_transition

logger = logging.getLogger(__name__)

# helper-only server events are not the seeker's business
SEEKER_EVENTS = SERVER_EVENTS - {Events.NEW_REQUEST, Events.REQUEST_LOCKED}

CONNECTION_LOST = "Connection lost. Please refresh."
SEEKER_CANCEL_REASON = "You cancelled the request."


class RequestLifecycle:
    """
    Owns the active Request exclusively. Collaborators (animator, estimator,
    notices) only receive derived data from here.
    """

    def __init__(
        self,
        channel,
        store: Optional[SessionSnapshotStore] = None,
        *,
        policy: Optional[TrackingPolicy] = None,
        clock: Callable[[], float] = time.time,
        scheduler=None,
        notices: Optional[NoticeBoard] = None,
        animator=None,
        estimator=None,
    ):
        self.channel = channel
        self.store = store or SessionSnapshotStore()
        self.policy = policy or default_tracking_policy()
        self.clock = clock
        self.scheduler = scheduler or LoopScheduler()
        self.notices = notices or NoticeBoard(lifetime=self.policy.notice_lifetime_seconds)
        self.animator = animator
        self.estimator = estimator

        self.request: Optional[Request] = None
        self.window: Optional[CancellationWindow] = None
        self.window_timer: Optional[CountdownTimer] = None
        self.confirm_in_flight = False
        self.last_cancellation: Optional[CancellationRecord] = None
        self.screen = screen_for(RequestStatus.IDLE)

        self._listeners: List[Callable[[RequestLifecycle], None]] = []
        self._subscriptions = HandleGroup()
        self._state_subscription: Optional[Handle] = None
        self._bound_generation: Optional[int] = None
        self._connection_lost_reported = False
        self._identity: Optional[str] = None

        self._handlers = {
            SearchStarted: self._on_search_started,
            HelperFound: self._on_helper_found,
            HelperOnTheWay: self._on_helper_en_route,
            ConfirmRedirect: self._on_helper_en_route,
            LocationUpdate: self._on_location_update,
            RequestCancelled: self._on_request_cancelled,
            RequestExpired: self._on_request_expired,
            CancelWindowExpired: self._on_cancel_window_expired,
            ServerError: self._on_server_error,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def status(self) -> RequestStatus:
        return self.request.status if self.request is not None else RequestStatus.IDLE

    @property
    def helper(self):
        return self.request.helper if self.request is not None else None

    @property
    def window_remaining(self) -> Optional[int]:
        if self.window_timer is None:
            return None
        return self.window_timer.remaining_seconds

    @property
    def can_cancel(self) -> bool:
        if self.request is None or not can_transition(self.request, Trigger.CANCEL):
            return False
        if self.status in WINDOW_STATUSES:
            return self.window is not None and self.window.is_open(self.clock())
        return True

    def subscribe(self, listener: Callable[[RequestLifecycle], None]) -> Handle:
        self._listeners.append(listener)

        def _release():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Handle(_release)

    # ------------------------------------------------------------------
    # Channel binding
    # ------------------------------------------------------------------

    def attach(self) -> Handle:
        """Starts listening to the channel; the handle detaches."""
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
        self._sync_identity(self.channel.credential)
        if self.channel.has_channel and self._bound_generation != self.channel.generation:
            self._bind()
        if status.is_connected:
            self._connection_lost_reported = False
        elif status.gave_up and not self._connection_lost_reported:
            self._connection_lost_reported = True
            self.notices.error(status.last_error or CONNECTION_LOST)

    def _sync_identity(self, credential: Optional[str]) -> None:
        if credential == self._identity:
            return
        previous, self._identity = self._identity, credential
        if previous is None:
            # first identity seen, or a login after logout: resume under it
            self.store.rescope(scope_for(credential), drop_previous=False)
            return
        logger.info(
            "Identity changed; dropping request %s",
            self.request.id if self.request is not None else None,
        )
        self.reset()
        self.store.rescope(scope_for(credential))

    def _bind(self) -> None:
        self._subscriptions.cancel_all()
        for name in sorted(SEEKER_EVENTS):
            self._subscriptions.add(self.channel.on(name, partial(self._receive, name)))
        self._bound_generation = self.channel.generation
        logger.debug("Lifecycle bound to channel generation %s", self._bound_generation)

    def _receive(self, name: str, payload) -> None:
        try:
            event = decode_event(name, payload)
        except EventDecodeError as exc:
            logger.warning("Ignoring malformed %s payload: %s", name, exc)
            return
        self.handle_event(event)

    def handle_event(self, event) -> None:
        """Applies one decoded server event. Out-of-order events are ignored."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("No seeker handling for %s", type(event).__name__)
            return
        try:
            handler(event)
        except RequestStateException as exc:
            logger.debug("Ignoring %s: %s", type(event).__name__, exc)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def submit_search(
        self,
        category: str,
        budget: float,
        estimated_arrival_time: int,
        coordinate: Optional[LngLat] = None,
    ) -> bool:
        """
        Starts a search. Returns False when the emit was dropped (nothing changes).
        """
        if self.request is not None and self.status.is_terminal:
            self.reset()
        if self.request is not None:
            raise RequestStateException(
                f"Request {self.request.id or '<pending>'} is still {self.status.value}; only one active request allowed"
            )

        coordinate = coordinate or self.policy.fallback_coordinate
        request = Request.new(category, budget, estimated_arrival_time, coordinate)
        if not can_transition(request, Trigger.SUBMIT_SEARCH):
            raise RequestStateException(f"Cannot submit a search from {request.status.value}")

        if not self.channel.emit(
            Events.SEARCH_HELP,
            search_help_payload(category, budget, estimated_arrival_time, coordinate),
        ):
            self.notices.warning(CONNECTION_LOST)
            return False

        self.request = request
        self._transition(Trigger.SUBMIT_SEARCH)
        self._persist()
        self._changed()
        return True

    async def search_from(self, source, category: str, budget: float, estimated_arrival_time: int) -> bool:
        """Same as submit_search, with the coordinate taken from a location source."""
        coordinate = await resolve_position(
            source,
            timeout=self.policy.location_timeout_seconds,
            fallback=self.policy.fallback_coordinate,
        )
        return self.submit_search(category, budget, estimated_arrival_time, coordinate)

    def confirm_helper(self) -> bool:
        if self.confirm_in_flight:
            logger.debug("Confirm already in flight for %s, suppressed", self.request.id if self.request else None)
            return False
        request = self._require_request()
        if not can_transition(request, Trigger.CONFIRM):
            raise RequestStateException(f"Cannot confirm a helper while {request.status.value}")

        if not self.channel.emit(Events.CONFIRM_HELPER, request_id_payload(request.id)):
            self.notices.warning(CONNECTION_LOST)
            return False

        self._transition(Trigger.CONFIRM)
        self.confirm_in_flight = True
        # provisional until the server sends its own expiry
        self._open_window(self.clock() + self.policy.provisional_cancel_window_seconds)
        self.notices.info("Confirming helper...")
        self._persist()
        self._changed()
        return True

    def cancel(self, reason: Optional[str] = None) -> bool:
        """
        Seeker-initiated cancel. Once confirmed, only while the window is open.
        Returns False when the emit was dropped (status unchanged).
        """
        request = self._require_request()
        if not can_transition(request, Trigger.CANCEL):
            raise RequestStateException(f"Cannot cancel a request that is {request.status.value}")
        if request.status in WINDOW_STATUSES and not (self.window and self.window.is_open(self.clock())):
            raise RequestStateException("Cancellation window has closed")

        if not self.channel.emit(Events.CANCEL_REQUEST, request_id_payload(request.id)):
            self.notices.warning(CONNECTION_LOST)
            return False

        self._transition(Trigger.CANCEL)
        self.last_cancellation = CancellationRecord(reason or SEEKER_CANCEL_REASON, CancelInitiator.SEEKER)
        self._finish()
        return True

    def complete(self) -> None:
        self._require_request()
        self._transition(Trigger.COMPLETE)
        self.notices.success("Help completed")
        self._finish()

    def reset(self) -> None:
        """Back to Idle; drops any request, window and snapshot."""
        self._close_window()
        self._stop_tracking()
        self.request = None
        self.confirm_in_flight = False
        self.last_cancellation = None
        self.store.clear()
        self._changed()

    def restore(self) -> Optional[Request]:
        """
        Resumes a request saved before a reload. Returns it, or None.

        A request cancelled before the reload is not resumed; its outcome is
        put back in last_cancellation and the cancelled screen shown once.
        """
        snapshot = self.store.load()
        if snapshot is None:
            outcome = self.store.take_cancellation()
            if outcome is not None:
                request_id, self.last_cancellation = outcome
                self._changed(screen=screen_for(RequestStatus.CANCELLED, request_id))
            return None

        self.request = snapshot.request
        self.last_cancellation = None
        if self.request.status in WINDOW_STATUSES:
            # a missing end means we cannot prove the window is still open
            self._open_window(snapshot.window_expires_at or self.clock())
        else:
            self._close_window()
        self.confirm_in_flight = self.request.status is RequestStatus.CONFIRMING

        helper = self.request.helper
        if helper is not None and helper.coordinate is not None and self.animator is not None:
            self.animator.set_target(helper.coordinate)
        logger.info("Restored request %s in status %s", self.request.id, self.request.status.value)
        self._changed()
        return self.request

    # ------------------------------------------------------------------
    # Server events
    # ------------------------------------------------------------------

    def _on_search_started(self, event: SearchStarted) -> None:
        request = self._require_request()
        self._transition(Trigger.SEARCH_ACKNOWLEDGED)
        request.helpers_notified = event.helpers_notified
        self.notices.info(f"Searching... {event.helpers_notified} helper(s) nearby")
        self._persist()
        self._changed()

    def _on_helper_found(self, event: HelperFound) -> None:
        request = self._require_request(event.request_id)
        self._transition(Trigger.HELPER_FOUND)
        request.id = event.request_id
        request.helper = event.helper
        self.notices.success("Helper found! Reviewing details...")
        if event.helper.coordinate is not None and self.animator is not None:
            self.animator.set_target(event.helper.coordinate)
        self._persist()
        self._changed()

    def _on_helper_en_route(self, event) -> None:
        request = self._require_request(event.request_id)
        previous = self._transition(Trigger.HELPER_EN_ROUTE)
        self.confirm_in_flight = False
        if event.cancel_window_expires_at is not None:
            self._open_window(event.cancel_window_expires_at)
        elif self.window is None:
            self._open_window(self.clock() + self.policy.provisional_cancel_window_seconds)
        if previous is RequestStatus.CONFIRMING:
            self.notices.success("Helper is on the way!")
        self._refresh_route()
        self._persist()
        self._changed()
        logger.debug("Request %s en route, window ends %s", request.id, self.window.expires_at)

    def _on_location_update(self, event: LocationUpdate) -> None:
        request = self._require_request(event.request_id)
        self._transition(Trigger.LOCATION_UPDATE)
        request.helper = request.helper.moved_to(event.coordinate)
        if self.animator is not None:
            self.animator.set_target(event.coordinate)
        self._refresh_route()
        self._persist()
        self._changed()

    def _on_request_cancelled(self, event: RequestCancelled) -> None:
        self._require_request(event.request_id)
        self._transition(Trigger.CANCEL)
        self.last_cancellation = CancellationRecord(event.reason, event.rejected_by)
        self.notices.error(event.reason)
        self._finish()

    def _on_request_expired(self, event: RequestExpired) -> None:
        self._require_request(event.request_id)
        self._transition(Trigger.EXPIRE)
        self.notices.error("Request has expired")
        self._finish()

    def _on_cancel_window_expired(self, event: CancelWindowExpired) -> None:
        self._require_request(event.request_id)
        if self.window is None:
            return
        now = self.clock()
        self.window = CancellationWindow(min(self.window.expires_at, now))
        if self.window_timer is not None:
            self.window_timer.expire_now()
        self._persist()
        self._changed()

    def _on_server_error(self, event: ServerError) -> None:
        self.notices.error(event.message)
        if self.request is not None and self.request.status is RequestStatus.CONFIRMING:
            self._transition(Trigger.CONFIRM_REJECTED)
            self.confirm_in_flight = False
            self._close_window()
            self._persist()
            self._changed()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_request(self, event_request_id: Optional[str] = None) -> Request:
        request = self.request
        if request is None:
            raise RequestStateException("No active request")
        if event_request_id is not None and request.id is not None and event_request_id != request.id:
            raise RequestStateException(f"Stale event for request {event_request_id} (active: {request.id})")
        return request

    def _transition(self, trigger: Trigger) -> RequestStatus:
        previous = apply_transition(self.request, trigger)
        if previous is not self.request.status:
            logger.info(
                "Request %s: %s -> %s",
                self.request.id or "<pending>",
                previous.value,
                self.request.status.value,
            )
        return previous

    def _open_window(self, expires_at: float) -> None:
        self.window = CancellationWindow(expires_at)
        if self.window_timer is None:
            self.window_timer = CountdownTimer(
                expires_at,
                clock=self.clock,
                scheduler=self.scheduler,
                tick_interval=self.policy.countdown_tick_seconds,
                on_expired=self._on_window_timer_expired,
            )
        else:
            self.window_timer.reset(expires_at)
        if not self.window_timer.running:
            self.window_timer.start()

    def _close_window(self) -> None:
        if self.window_timer is not None:
            self.window_timer.stop()
            self.window_timer = None
        self.window = None

    def _on_window_timer_expired(self) -> None:
        logger.info("Cancellation window closed for request %s", self.request.id if self.request else None)
        self._changed()

    def _refresh_route(self) -> None:
        if self.estimator is None or self.status is not RequestStatus.EN_ROUTE:
            return
        helper = self.request.helper
        if helper is None or helper.coordinate is None:
            return
        self.estimator.request(
            helper.coordinate,
            self.request.seeker_coordinate,
            participants=(self.request.id, helper.helper_id),
        )

    def _stop_tracking(self) -> None:
        if self.animator is not None:
            self.animator.cancel()
        if self.estimator is not None:
            self.estimator.close()

    def _persist(self) -> None:
        request = self.request
        if request is None or request.status.is_terminal:
            return
        expires_at = self.window.expires_at if self.window is not None else None
        self.store.save(SessionSnapshot(request=request, window_expires_at=expires_at))

    def _finish(self) -> None:
        """Terminal transition: no window, no snapshot, no live tracking."""
        self._close_window()
        self._stop_tracking()
        self.confirm_in_flight = False
        self.store.clear()
        if self.status is RequestStatus.CANCELLED and self.last_cancellation is not None:
            self.store.save_cancellation(self.request.id, self.last_cancellation)
        self._changed()

    def _changed(self, screen: Optional[str] = None) -> None:
        request_id = self.request.id if self.request is not None else None
        self.screen = screen or screen_for(self.status, request_id)
        for listener in list(self._listeners):
            listener(self)
