"""
Event Gate - correlates machine link notifications with waiting job steps.

The machine link reports completions on its own response loop, with no
request/response pairing. The gate latches each kind of event so that a
notification arriving before anyone waits for it is not lost, and lets the
sequencer wait for "has this happened since I armed it".

Usage:
    await gate.arm(JobEvent.BATCH_COMPLETE)     # before issuing the batch
    await link.submit_batch(batch)
    ok = await gate.wait_for(JobEvent.BATCH_COMPLETE, timeout=90)
"""

import asyncio
from typing import Any

from star_cutter.core.batch import JobEvent
from star_cutter.core.logging import get_logger

logger = get_logger()


class EventGate:
    """
    Latching wait/notify primitive keyed by JobEvent.

    All per-kind state is guarded by a single asyncio.Lock, shared by one
    asyncio.Condition per event kind.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._conditions: dict[JobEvent, asyncio.Condition] = {
            kind: asyncio.Condition(self._lock) for kind in JobEvent
        }
        self._signalled: dict[JobEvent, bool] = {kind: False for kind in JobEvent}
        self._payloads: dict[JobEvent, Any] = {kind: None for kind in JobEvent}

    async def arm(self, kind: JobEvent) -> None:
        """
        Clear any earlier occurrence of an event kind.

        Must be called before the operation that will produce the event is
        issued, otherwise a fast controller's notification may be discarded.

        Args:
            kind: The event kind to reset.
        """
        async with self._lock:
            self._signalled[kind] = False
            self._payloads[kind] = None
        logger.verbose(f"Armed {kind}")

    async def wait_for(self, kind: JobEvent, timeout: float | None) -> bool:
        """
        Wait until an event kind has been signalled since it was last armed.

        A latched event is consumed: the flag is cleared before returning. The
        payload stays readable until the next arm().

        Args:
            kind: The event kind to wait for.
            timeout: Maximum time to wait in seconds (None waits forever).

        Returns:
            True if the event occurred, False if the timeout elapsed.
        """
        condition = self._conditions[kind]
        async with condition:
            if not self._signalled[kind]:
                try:
                    # wait_for re-checks the predicate under the lock after every wakeup
                    await asyncio.wait_for(
                        condition.wait_for(lambda: self._signalled[kind]), timeout
                    )
                except asyncio.TimeoutError:
                    logger.debug(f"Timed out after {timeout}s waiting for {kind}")
                    return False

            self._signalled[kind] = False
            return True

    async def signal(self, kind: JobEvent, payload: Any = None) -> None:
        """
        Record that an event kind occurred and wake its waiters.

        Called from the machine link's notification flow.

        Args:
            kind: The event kind that occurred.
            payload: Optional data carried by the event (e.g. a probe measurement).
        """
        condition = self._conditions[kind]
        async with condition:
            self._signalled[kind] = True
            self._payloads[kind] = payload
            condition.notify_all()
        logger.verbose(f"Signalled {kind} (payload: {payload!r})")

    async def snapshot(self, kind: JobEvent) -> tuple[bool, Any]:
        """
        Read an event kind's flag and payload without waiting or consuming it.

        Returns:
            Tuple of (signalled, payload).
        """
        async with self._lock:
            return self._signalled[kind], self._payloads[kind]

    def payload(self, kind: JobEvent) -> Any:
        """Get the payload of the last recorded occurrence of an event kind."""
        return self._payloads[kind]
