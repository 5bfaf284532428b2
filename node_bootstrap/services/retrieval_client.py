"""
Follower-side retrieval of the trust bundle with bounded retries.
"""
import logging
import os
import random
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.errors import InstallError, OperationCancelled, RetrievalExhausted, TransientFailure
from ..models.trust import RetrievalCampaign, RetrievalOutcome, TrustBundle


@dataclass
class BackoffPolicy:
    """Delay between failed attempts."""
    base_seconds: float = 5.0
    strategy: str = "fixed"  # fixed, exponential
    max_seconds: float = 60.0
    jitter: bool = True

    def delay(self, failed_attempt: int) -> float:
        """Seconds to wait after the ``failed_attempt``-th failure (1-based)."""
        if self.strategy == "fixed":
            return self.base_seconds

        delay = min(self.max_seconds, self.base_seconds * (2 ** (failed_attempt - 1)))
        if self.jitter:
            # Equal jitter: never less than half the computed delay
            delay = delay / 2 + random.uniform(0, delay / 2)
        return delay

    @classmethod
    def from_config(cls, config) -> 'BackoffPolicy':
        return cls(
            base_seconds=float(config.backoff_seconds),
            strategy=config.backoff_strategy,
            max_seconds=float(config.max_backoff_seconds)
        )


def source_url_for(seed_host: str, port: int, file_name: str) -> str:
    """
    Build the authority's download URL from a seed host entry.

    Seed hosts may carry the transport port (``10.0.0.1:9300``); only the
    host part is kept.
    """
    host = seed_host.strip().strip('"')
    if host.startswith("["):
        host = host[:host.index("]") + 1]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    elif host.count(":") > 1:
        host = f"[{host}]"
    if not host:
        raise ValueError(f"Invalid seed host: {seed_host!r}")
    return f"http://{host}:{port}/{file_name}"


class RetrievalClient:
    """Downloads the trust bundle from the authority, retrying transient failures."""

    def __init__(self, timeout: int = 30, sleep: Optional[Callable[[float], None]] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            timeout: Per-request timeout in seconds
            sleep: Called with the backoff delay between attempts; by default the
                client waits on the cancel event, or sleeps when there is none
            session: Preconfigured requests session (mainly for tests)
        """
        self.timeout = timeout
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)
        self.session = session or self._create_session()
        self.last_campaign: Optional[RetrievalCampaign] = None

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        # Attempts are counted by the campaign, not by the transport
        adapter = HTTPAdapter(max_retries=Retry(total=0, read=False))
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'User-Agent': 'node-bootstrap',
            'Accept': 'application/x-pkcs12, application/octet-stream',
            'Accept-Encoding': 'identity',
        })
        return session

    def retrieve(self, source_url: str, dest_path: str, max_attempts: int = 50,
                 backoff: Optional[BackoffPolicy] = None,
                 cancel_event: Optional[threading.Event] = None) -> TrustBundle:
        """
        Fetch ``source_url`` into ``dest_path``.

        Makes at most ``max_attempts`` attempts, sleeping per ``backoff``
        between them, and stops at the first complete, non-empty download.
        ``dest_path`` is only written on success. Setting ``cancel_event``
        ends the campaign before the next attempt and cuts the backoff short;
        a request already in flight runs to its timeout.

        Raises:
            RetrievalExhausted: If every attempt failed
            OperationCancelled: If ``cancel_event`` was set
            InstallError: If the downloaded bundle cannot be written
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        backoff = backoff or BackoffPolicy()

        campaign = RetrievalCampaign(source_url=source_url, max_attempts=max_attempts)
        self.last_campaign = campaign
        self.logger.info(f"Attempting to download {source_url}")

        for index in range(1, max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled(
                    f"Download of {source_url} cancelled after {campaign.attempt_count} attempt(s)",
                    step="retrieve"
                )
            try:
                content = self._fetch(source_url)
            except TransientFailure as e:
                campaign.record(RetrievalOutcome.TRANSIENT_FAILURE, str(e))
                if index < max_attempts:
                    delay = backoff.delay(index)
                    self.logger.warning(
                        f"Download failed, retrying in {delay:.1f}s... ({index}/{max_attempts}): {e}"
                    )
                    self._pause(delay, cancel_event)
                else:
                    self.logger.warning(f"Download failed ({index}/{max_attempts}): {e}")
                continue

            campaign.record(RetrievalOutcome.SUCCESS)
            bundle = self._write_bundle(content, dest_path)
            self.logger.info(
                f"Downloaded {bundle.file_name} ({bundle.size} bytes) on attempt {index}/{max_attempts}"
            )
            return bundle

        raise RetrievalExhausted(source_url, campaign.attempt_count, campaign.last_error)

    def _pause(self, delay: float, cancel_event: Optional[threading.Event]):
        if self.sleep is not None:
            self.sleep(delay)
        elif cancel_event is not None:
            cancel_event.wait(delay)
        else:
            time.sleep(delay)

    def _fetch(self, url: str) -> bytes:
        """One GET; anything short of a complete, non-empty body is transient."""
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise TransientFailure(f"Request timeout: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise TransientFailure(f"Connection error: {e}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            raise TransientFailure(f"HTTP error {status}") from e
        except requests.exceptions.RequestException as e:
            raise TransientFailure(f"Request error: {e}") from e

        content = response.content
        if not content:
            raise TransientFailure("Empty response body")

        expected = response.headers.get('Content-Length')
        if expected and expected.isdigit() and int(expected) != len(content):
            raise TransientFailure(f"Incomplete download: {len(content)} of {expected} bytes")

        return content

    def _write_bundle(self, content: bytes, dest_path: str) -> TrustBundle:
        dest_dir = os.path.dirname(os.path.abspath(dest_path))
        try:
            os.makedirs(dest_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".download-", dir=dest_dir)
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(content)
                os.replace(tmp_path, dest_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise InstallError(f"Cannot write downloaded bundle to {dest_path}: {e}") from e

        return TrustBundle(content=content, file_name=os.path.basename(dest_path), path=dest_path)
