"""
Shutdown signal handler for graceful controller termination.
"""
import asyncio
import signal
from typing import Optional

from vdb_controller.config.logging import get_logger

logger = get_logger(__name__)


class ShutdownHandler:
    """Turns SIGINT/SIGTERM into an asyncio.Event the manager waits on."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self):
        """Initialize shutdown handler."""
        self.shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def setup(self) -> None:
        """Install signal handlers on the running loop."""
        self._loop = asyncio.get_running_loop()
        self.shutdown_event = asyncio.Event()
        for sig in self.SIGNALS:
            self._loop.add_signal_handler(sig, self._signal_handler, sig)
        logger.info("shutdown_handler_installed")

    def _signal_handler(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        logger.info("received_signal_initiating_shutdown", signal=sig.name)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        self.shutdown_event.set()

    def is_shutting_down(self) -> bool:
        """Check if shutdown has been requested."""
        return self.shutdown_event is not None and self.shutdown_event.is_set()

    async def wait(self) -> None:
        """Block until shutdown is requested."""
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        await self.shutdown_event.wait()

    def restore(self) -> None:
        """Remove the installed signal handlers."""
        if self._loop is None:
            return
        for sig in self.SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None
