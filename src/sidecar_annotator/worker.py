"""
Background re-anchoring

Re-anchoring walks many pages and must not run on an interactive thread.
``BackgroundReanchor`` runs one pass on a daemon thread and can be cancelled
between pages.
"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .anchoring.reanchorer import PageTextProvider, ReanchorReport

logger = logging.getLogger(__name__)


class BackgroundReanchor:
    """
    One re-anchoring pass of a session, run on a worker thread.

    Args:
        session: The document's AnnotationSession. Its owner must not edit it
            until the pass has finished.
        page_text: Page text under the session's current layout.
        on_done: Called on the worker thread with the report, or with None
            when the pass failed.
    """

    def __init__(self, session, page_text: PageTextProvider,
                 on_done: Optional[Callable[[Optional[ReanchorReport]], None]] = None):
        self.session = session
        self.page_text = page_text
        self.on_done = on_done
        self.result: Optional[ReanchorReport] = None
        self.error: Optional[BaseException] = None
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "BackgroundReanchor":
        """Start the pass in a separate thread"""
        if self._thread is not None:
            raise RuntimeError("re-anchoring already started")
        self._thread = threading.Thread(target=self._run, name="sidecar-reanchor")
        self._thread.daemon = True
        self._thread.start()
        return self

    def _run(self):
        """Run the pass (runs in separate thread)"""
        try:
            self.result = self.session.reanchor_highlights_for_current_layout(
                self.page_text, cancel_event=self._cancel)
        except (SQLAlchemyError, RuntimeError, ValueError) as e:
            logger.error(f"Re-anchoring failed for {self.session.doc_id}: {e}")
            self.error = e
        if self.on_done is not None:
            self.on_done(self.result)

    def cancel(self):
        """Ask the pass to stop before its next page."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> Optional[ReanchorReport]:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.result
