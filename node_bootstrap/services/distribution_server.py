"""
Transient HTTP distribution of the trust bundle from the authority node.

A session serves exactly one file for a bounded window. It ends when it is
cancelled, when its timeout elapses, or (optionally) after the first complete
download. Stopping closes the listening socket so no new connection is
accepted; downloads already in progress finish on their handler threads.
"""
import logging
import os
import threading
from typing import List, Optional

from werkzeug.serving import make_server

from ..app import create_distribution_app
from ..models.errors import SessionError
from ..models.trust import SessionState, StopReason, TrustBundle


class DistributionSession:
    """The authority's serving window for one trust bundle."""

    def __init__(self, bundle: TrustBundle, host: str = "0.0.0.0", port: int = 8000,
                 timeout_seconds: int = 0, stop_after_first_fetch: bool = False):
        self.bundle = bundle
        self.host = host
        self.port = port
        self.timeout_seconds = timeout_seconds
        self.stop_after_first_fetch = stop_after_first_fetch
        self.state = SessionState.NOT_STARTED
        self.stop_reason: Optional[StopReason] = None
        self.peers: List[str] = []
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._timer: Optional[threading.Timer] = None

    @property
    def fetch_count(self) -> int:
        with self._lock:
            return len(self.peers)

    def url_for(self, host: str) -> str:
        return f"http://{host}:{self.port}/{self.bundle.file_name}"

    def start(self) -> 'DistributionSession':
        """Bind the port and begin serving on a background thread."""
        with self._lock:
            if self.state != SessionState.NOT_STARTED:
                raise SessionError(f"Session already {self.state.value}")

            app = create_distribution_app(self.bundle, on_fetch=self._record_fetch)
            try:
                self._server = make_server(self.host, self.port, app, threaded=True)
            except (OSError, SystemExit) as e:
                # werkzeug exits instead of raising when the port is taken
                raise SessionError(f"Cannot bind {self.host}:{self.port}: {e}") from None

            self.port = self._server.server_port
            self._thread = threading.Thread(
                target=self._server.serve_forever,
                name=f"bundle-distribution-{self.port}",
                daemon=True
            )
            self._thread.start()
            self.state = SessionState.SERVING

            if self.timeout_seconds > 0:
                self._timer = threading.Timer(
                    self.timeout_seconds, self.stop, kwargs={'reason': StopReason.TIMEOUT}
                )
                self._timer.daemon = True
                self._timer.start()

        self.logger.info(
            f"Serving {self.bundle.file_name} on {self.host}:{self.port}"
            + (f" for at most {self.timeout_seconds}s" if self.timeout_seconds > 0 else " until stopped")
        )
        return self

    def _record_fetch(self, peer: str):
        with self._lock:
            self.peers.append(peer)
            first = len(self.peers) == 1
        self.logger.info(f"{peer} downloaded {self.bundle.file_name}")
        if first and self.stop_after_first_fetch:
            # Runs on a request thread; shut down from elsewhere.
            threading.Thread(
                target=self.stop, kwargs={'reason': StopReason.FIRST_FETCH}, daemon=True
            ).start()

    def stop(self, reason: StopReason = StopReason.CANCELLED) -> None:
        """Stop accepting connections and release the port. Safe to call repeatedly."""
        with self._lock:
            if self.state == SessionState.STOPPED:
                return
            was_serving = self.state == SessionState.SERVING
            self.state = SessionState.STOPPED
            self.stop_reason = reason
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()

        if was_serving:
            self._server.shutdown()
            self._server.server_close()
            if self._thread is not None and self._thread is not threading.current_thread():
                self._thread.join()
            self.logger.info(
                f"Distribution of {self.bundle.file_name} stopped ({reason.value}) "
                f"after {self.fetch_count} download(s)"
            )

        self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[StopReason]:
        """Block until the session stops; returns why it stopped (None if still serving)."""
        self._stopped.wait(timeout)
        return self.stop_reason

    def __enter__(self):
        if self.state == SessionState.NOT_STARTED:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop(StopReason.ERROR if exc_type is not None else StopReason.CANCELLED)
        return False


class DistributionServer:
    """Starts distribution sessions with the configured bounds."""

    def __init__(self, host: str = "0.0.0.0", timeout_seconds: int = 900,
                 stop_after_first_fetch: bool = False):
        self.host = host
        self.timeout_seconds = timeout_seconds
        self.stop_after_first_fetch = stop_after_first_fetch
        self.logger = logging.getLogger(__name__)

    def serve(self, bundle_path: str, port: int = 8000) -> DistributionSession:
        """
        Serve the bundle at ``bundle_path`` on ``port``.

        Returns:
            A started DistributionSession

        Raises:
            SessionError: If the bundle is missing or empty, or the port cannot be bound
        """
        if not os.path.isfile(bundle_path):
            raise SessionError(f"Bundle not found: {bundle_path}")

        bundle = TrustBundle.from_file(bundle_path)
        if bundle.is_empty():
            raise SessionError(f"Refusing to serve empty bundle: {bundle_path}")

        session = DistributionSession(
            bundle,
            host=self.host,
            port=port,
            timeout_seconds=self.timeout_seconds,
            stop_after_first_fetch=self.stop_after_first_fetch
        )
        return session.start()
