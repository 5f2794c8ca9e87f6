"""Host notifications: state changes, errors and finished commands."""

import itertools
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from sourcectl.commands import Command

logger = logging.getLogger(__name__)

StatesChangedCallback = Callable[[set[Path]], None]
ErrorCallback = Callable[[list[str]], None]
CommandFinishedCallback = Callable[[Command], None]


@dataclass
class Subscriber:
    """Callbacks registered by one subscriber; any of them may be None."""

    on_states_changed: Optional[StatesChangedCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_command_finished: Optional[CommandFinishedCallback] = None


class SubscriptionToken:
    """
    Opaque handle returned by subscribe().

    Usable as a context manager; leaving the block unsubscribes.
    """

    def __init__(self, hub: "NotificationHub", token_id: int) -> None:
        self._hub = hub
        self.token_id = token_id

    def __repr__(self) -> str:
        return f"SubscriptionToken({self.token_id}, active={self.active})"

    def __enter__(self) -> "SubscriptionToken":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()

    @property
    def active(self) -> bool:
        return self._hub.is_subscribed(self)

    def unsubscribe(self) -> bool:
        return self._hub.unsubscribe(self)


class NotificationHub:
    """
    Fan-out of notifications to subscribers.

    Callbacks run on the calling thread (usually a queue worker). A failing
    callback is logged and does not affect other subscribers or the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        on_states_changed: Optional[StatesChangedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_command_finished: Optional[CommandFinishedCallback] = None,
    ) -> SubscriptionToken:
        subscriber = Subscriber(on_states_changed, on_error, on_command_finished)
        with self._lock:
            token_id = next(self._ids)
            self._subscribers[token_id] = subscriber
        logger.debug(f"Subscriber {token_id} registered")
        return SubscriptionToken(self, token_id)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """
        Remove a subscriber.

        Returns:
            False if the token was already unsubscribed
        """
        with self._lock:
            removed = self._subscribers.pop(token.token_id, None) is not None
        if removed:
            logger.debug(f"Subscriber {token.token_id} removed")
        return removed

    def is_subscribed(self, token: SubscriptionToken) -> bool:
        with self._lock:
            return token.token_id in self._subscribers

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def _snapshot(self) -> list[tuple[int, Subscriber]]:
        with self._lock:
            return list(self._subscribers.items())

    def _deliver(self, token_id: int, name: str, callback: Optional[Callable[[Any], None]], arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception:
            logger.exception(f"Subscriber {token_id} failed in {name}")

    def states_changed(self, paths: Iterable[Path]) -> None:
        changed = set(paths)
        if not changed:
            return
        for token_id, subscriber in self._snapshot():
            self._deliver(token_id, "on_states_changed", subscriber.on_states_changed, set(changed))

    def error(self, lines: list[str]) -> None:
        for token_id, subscriber in self._snapshot():
            self._deliver(token_id, "on_error", subscriber.on_error, list(lines))

    def command_finished(self, command: Command) -> None:
        for token_id, subscriber in self._snapshot():
            self._deliver(token_id, "on_command_finished", subscriber.on_command_finished, command)
