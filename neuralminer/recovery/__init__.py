"""Failure classification and recovery-policy decisions."""

from neuralminer.recovery.agent import RecoveringAgent
from neuralminer.recovery.classify import classify_error
from neuralminer.recovery.failures import (
    FailureKind,
    FailureRecord,
    RecoveryAction,
    RecoveryStrategy,
)
from neuralminer.recovery.manager import RecoveryManager

__all__ = [
    "FailureKind",
    "FailureRecord",
    "RecoveryAction",
    "RecoveryStrategy",
    "RecoveryManager",
    "RecoveringAgent",
    "classify_error",
]
