"""Notifications emitted by EnsyClient.

Register a handler with EnsyClient.subscribe() and match on the event type:

    def on_event(event: Event) -> None:
        if isinstance(event, StateUpdate):
            print(changed_fields(event.previous, event.current))
        elif isinstance(event, (Disconnected, Error)):
            mark_unavailable()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from .protocol import DeviceState


@dataclass(frozen=True)
class Connected:
    """Session established and report topics subscribed."""


@dataclass(frozen=True)
class Disconnected:
    """An established session was lost. The client will reconnect.

    A link error on an established session is reported here, with the
    transport's message in reason, and not as a separate Error. Error is
    reserved for connection attempts that fail and for failed publishes.
    """

    reason: str | None = None


@dataclass(frozen=True)
class Error:
    """A connection attempt failed, or a publish failed."""

    reason: str
    exception: BaseException | None = None


@dataclass(frozen=True)
class StateUpdate:
    """A report message changed (or confirmed) the device state.

    previous is the snapshot from before the message was applied.
    """

    current: DeviceState
    previous: DeviceState


Event = Union[Connected, Disconnected, Error, StateUpdate]
EventHandler = Callable[[Event], None]
