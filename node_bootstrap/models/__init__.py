"""
Models package for the node bootstrap.
"""

from .config import Config, ConfigValidationError, ConfigValidationResult
from .errors import (
    BootstrapError, ConfigError, GenerationError, InstallError, OperationCancelled,
    RetrievalExhausted, SessionError, TransientFailure
)
from .node import BootstrapResult, NodeIdentity, NodeRole, NodeState, NodeStateMachine
from .trust import (
    InstallResult, RetrievalAttempt, RetrievalCampaign, RetrievalOutcome,
    SessionState, StopReason, TrustBundle
)

__all__ = [
    'Config',
    'ConfigValidationError',
    'ConfigValidationResult',
    'BootstrapError',
    'ConfigError',
    'GenerationError',
    'InstallError',
    'OperationCancelled',
    'RetrievalExhausted',
    'SessionError',
    'TransientFailure',
    'BootstrapResult',
    'NodeIdentity',
    'NodeRole',
    'NodeState',
    'NodeStateMachine',
    'InstallResult',
    'RetrievalAttempt',
    'RetrievalCampaign',
    'RetrievalOutcome',
    'SessionState',
    'StopReason',
    'TrustBundle'
]
