"""
Link Listener - notification hooks delivered by a machine link.

A machine link calls these hooks from its own response loop, in the order it
observed the corresponding controller output. Subclasses override the hooks
they care about; the defaults do nothing.
"""


class LinkListener:
    """Base class for receivers of machine link notifications."""

    async def on_open(self) -> None:
        """The transport to the controller has been opened."""

    async def on_ready(self) -> None:
        """The controller announced it is ready to accept commands."""

    async def on_status_line(self, line: str) -> None:
        """
        A free-text status line was received (e.g. "[PRB:...]" or "[MSG:...]").

        Args:
            line: The cleaned status line.
        """

    async def on_batch_complete(self, error: str | None) -> None:
        """
        The in-flight batch finished.

        Args:
            error: None if every command was acknowledged, otherwise the
                controller response that aborted the batch.
        """

    async def on_homing_complete(self, error: str | None) -> None:
        """
        A homing cycle finished.

        Args:
            error: None on success, otherwise the controller's error response.
        """

    async def on_close(self, reason: str | None) -> None:
        """
        The transport was closed.

        Args:
            reason: None for an orderly close, otherwise why the link dropped.
        """
