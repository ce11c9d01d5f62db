"""
Event Broadcaster - per-job publish/subscribe

Listeners are called synchronously, in emission order. A listener that
raises is logged and skipped; delivery to the others continues.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# listener({"event": name, "data": payload})
Listener = Callable[[Dict[str, Any]], None]


class EventBroadcaster:
    """
    Fan-out of job events to any number of subscribers.

    Single event loop only: subscribe, publish and unsubscribe all run
    synchronously within one scheduling turn, so no locking is needed.
    """

    def __init__(self):
        """Initialize empty subscriber table"""
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, job_id: str, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for a job's events.

        Args:
            job_id: Job to listen to
            listener: Called with {"event", "data"} for every event

        Returns:
            Unsubscribe function (idempotent; removes only this listener)
        """
        self._listeners.setdefault(job_id, []).append(listener)
        unsubscribed = False

        def unsubscribe() -> None:
            nonlocal unsubscribed
            if unsubscribed:
                return
            unsubscribed = True
            listeners = self._listeners.get(job_id)
            if listeners and listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def publish(self, job_id: str, event: str, data: Any) -> int:
        """
        Deliver an event to every current subscriber of a job.

        Args:
            job_id: Job the event belongs to
            event: Event name
            data: JSON-serializable payload

        Returns:
            Number of listeners the event was delivered to
        """
        message = {"event": event, "data": data}
        delivered = 0

        # Copy so a listener may unsubscribe while being called
        for listener in list(self._listeners.get(job_id, ())):
            try:
                listener(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Listener for job {job_id} failed on '{event}' event: {e}")

        return delivered

    def subscriber_count(self, job_id: str) -> int:
        return len(self._listeners.get(job_id, ()))

    def close(self, job_id: str) -> None:
        """Drop every listener of a job"""
        self._listeners.pop(job_id, None)
