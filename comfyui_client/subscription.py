"""One-shot subscriptions to WebSocket events."""
import asyncio
from typing import Any, Callable, Optional, Union

Event = dict[str, Any]
Predicate = Callable[[Event], bool]


class Subscription:
    """Waits for the first event accepted by ``predicate``.

    Delivery is at most once: after a match (or a failure) every further
    event is ignored. Awaiting the subscription returns the matching event
    or raises the failure.
    """

    def __init__(self, predicate: Predicate):
        self._predicate = predicate
        self._future: asyncio.Future[Event] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def deliver(self, event: Event) -> bool:
        """Offer an event. Returns True if it resolved the subscription."""
        if self._future.done():
            return False
        try:
            matched = self._predicate(event)
        except Exception as e:
            self._future.set_exception(e)
            return False
        if matched:
            self._future.set_result(event)
        return matched

    def fail(self, error: BaseException):
        if not self._future.done():
            self._future.set_exception(error)

    def cancel(self):
        self._future.cancel()

    def __await__(self):
        return self._future.__await__()


class EventRecorder:
    """Keeps every event accepted by ``predicate`` while registered.

    The first delivery failure is kept in ``error`` instead of being raised.
    """

    def __init__(self, predicate: Predicate):
        self._predicate = predicate
        self.events: list[Event] = []
        self.error: Optional[BaseException] = None

    def deliver(self, event: Event) -> bool:
        try:
            matched = self._predicate(event)
        except Exception as e:
            self.fail(e)
            return False
        if matched:
            self.events.append(event)
        return matched

    def fail(self, error: BaseException):
        if self.error is None:
            self.error = error

    def cancel(self):
        pass


Observer = Union[Subscription, EventRecorder]


def finished_prompt_id(event: Event) -> Optional[str]:
    """Prompt id of an ``executing`` event that marks the end of a prompt, else None.

    While a prompt runs, ``executing`` events name the active node; the final
    one for a prompt has no node.
    """
    if event.get("type") != "executing":
        return None
    data = event.get("data")
    if not isinstance(data, dict) or data.get("node"):
        return None
    return data.get("prompt_id")


def is_execution_done(event: Event, prompt_id: str) -> bool:
    """True for the ``executing`` event that marks the end of ``prompt_id``."""
    return finished_prompt_id(event) == prompt_id


def is_any_execution_done(event: Event) -> bool:
    return finished_prompt_id(event) is not None
