"""
Data models for trust material and its distribution.
"""
import hashlib
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


DEFAULT_BUNDLE_FILE_NAME = "elastic-certificates.p12"


@dataclass
class TrustBundle:
    """Shared keystore artifact, bit-identical on every node."""
    content: bytes
    file_name: str = DEFAULT_BUNDLE_FILE_NAME
    path: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    def is_empty(self) -> bool:
        return self.size == 0

    @classmethod
    def from_file(cls, path: str) -> 'TrustBundle':
        """Read a bundle from disk; the file name is taken from the path."""
        with open(path, 'rb') as f:
            content = f.read()
        return cls(content=content, file_name=os.path.basename(path), path=path)


class SessionState(Enum):
    NOT_STARTED = "not_started"
    SERVING = "serving"
    STOPPED = "stopped"


class StopReason(Enum):
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    FIRST_FETCH = "first_fetch"
    ERROR = "error"


class RetrievalOutcome(Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass
class RetrievalAttempt:
    """One follower-side try to fetch the bundle."""
    index: int
    source_url: str
    outcome: RetrievalOutcome
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class RetrievalCampaign:
    """Sequence of attempts against one source, bounded by max_attempts."""
    source_url: str
    max_attempts: int
    attempts: List[RetrievalAttempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].outcome == RetrievalOutcome.SUCCESS

    @property
    def exhausted(self) -> bool:
        return not self.succeeded and self.attempt_count >= self.max_attempts

    @property
    def last_error(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if attempt.error_message:
                return attempt.error_message
        return None

    def record(self, outcome: RetrievalOutcome, error_message: Optional[str] = None) -> RetrievalAttempt:
        attempt = RetrievalAttempt(
            index=self.attempt_count + 1,
            source_url=self.source_url,
            outcome=outcome,
            error_message=error_message
        )
        self.attempts.append(attempt)
        return attempt


@dataclass
class InstallResult:
    """Acknowledgement returned by the bundle installer."""
    dest_path: str
    changed: bool
    sha256: str
    owner: str
    group: str
    mode: int
