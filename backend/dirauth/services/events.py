import logging
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthEvent:
    auth_name: str
    user_id: int


@dataclass
class EventDispatcher:
    """In-process fire-and-forget event dispatch.

    A failing listener is logged and does not stop the other listeners or
    change the outcome of the operation that dispatched the event.
    """

    listeners: dict[str, list[Callable]] = field(default_factory=dict)

    def add_listener(self, name: str, listener: Callable) -> None:
        self.listeners.setdefault(name, []).append(listener)

    def remove_listener(self, name: str, listener: Callable) -> None:
        if listener in self.listeners.get(name, []):
            self.listeners[name].remove(listener)
            if not self.listeners[name]:
                del self.listeners[name]

    def dispatch(self, name: str, event) -> None:
        for listener in list(self.listeners.get(name, [])):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener for event '{name}' failed")


def log_auth_event(event: AuthEvent) -> None:
    logger.info(f"Authentication succeeded: backend={event.auth_name} user_id={event.user_id}")


dispatcher = EventDispatcher()
