#Expose the realtime pieces:
#Channel session (connection lifecycle, emit/on)
#Event vocabulary (names, typed server events, payload builders)
#Scheduling primitives (handles, tickers)
#The Socket.IO transport is imported explicitly by whoever wires the app.

from .channel import ChannelSession, ChannelStatus, ConnectionState, DroppedEmission, connection_label
from .events import Events, EventDecodeError, decode_event
from .scheduling import Handle, HandleGroup, LoopScheduler, Ticker

__all__ = [
    "ChannelSession",
    "ChannelStatus",
    "ConnectionState",
    "DroppedEmission",
    "connection_label",
    "Events",
    "EventDecodeError",
    "decode_event",
    "Handle",
    "HandleGroup",
    "LoopScheduler",
    "Ticker",
]
