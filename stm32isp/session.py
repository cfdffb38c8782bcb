"""
Download session handling for stm32isp.
Carries progress reporting and cancellation for one download, and turns the
result of a programming run into a DownloadOutcome.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .exceptions import DownloadCancelledException, STM32ISPException

logger = logging.getLogger(__name__)


class DownloadOutcome(Enum):
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


class DownloadSession:
    """State of a single download, owned by the caller for its duration."""

    def __init__(self, on_progress: Optional[Callable[[int, int], None]] = None):
        """
        Args:
            on_progress: Called with (bytes_written, total_bytes) after every chunk
        """
        self.on_progress = on_progress
        self.bytes_written = 0
        self.total_bytes = 0
        self.error: Optional[Exception] = None
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request cancellation at the next chunk boundary. Safe from any thread."""
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def checkpoint(self) -> None:
        """Raise DownloadCancelledException if cancellation was requested."""
        if self._cancel.is_set():
            raise DownloadCancelledException(self.bytes_written, self.total_bytes)

    def start(self, total_bytes: int) -> None:
        self.bytes_written = 0
        self.total_bytes = total_bytes

    def advance(self, count: int) -> None:
        """Record count more bytes written and notify the progress callback."""
        self.bytes_written += count
        if self.on_progress:
            self.on_progress(self.bytes_written, self.total_bytes)


def close_quietly(link) -> None:
    """Close a link, logging instead of raising on failure."""
    if link is None:
        return
    try:
        link.close()
    except Exception as e:
        logger.warning(f"Failed to close connection: {e}")


def run_download(operation: Callable[[DownloadSession], None], session: DownloadSession,
                 link=None) -> DownloadOutcome:
    """
    Run a programming operation and close the link afterwards, whatever happens.

    Args:
        operation: Callable taking the session, e.g. a bound programmer.program
        session: Session for this download
        link: Link to close once the operation is over

    Returns:
        DownloadOutcome; on FAILED the exception is kept in session.error
    """
    try:
        operation(session)
        logger.info("Download completed")
        return DownloadOutcome.COMPLETED
    except DownloadCancelledException as e:
        logger.info(str(e))
        return DownloadOutcome.CANCELLED
    except STM32ISPException as e:
        logger.error(f"Download failed: {e}")
        session.error = e
        return DownloadOutcome.FAILED
    finally:
        close_quietly(link)
