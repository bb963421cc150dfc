"""
Error taxonomy for token launches
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """How a collaborator failure should be handled"""
    TRANSIENT = "transient"    # network/timeout, safe to retry
    AMBIGUOUS = "ambiguous"    # submitted, outcome unknown - reconcile first
    REJECTED = "rejected"      # definitive refusal, never retried


class LaunchError(Exception):
    """Base class for everything raised by the launch core"""


class ConfigError(LaunchError):
    """Invalid or missing configuration"""


# Input errors: caller mistakes, surfaced immediately, never retried

class InputError(LaunchError):
    pass


class InvalidLaunchRequest(InputError):
    pass


class InvalidAllocationInput(InputError):
    pass


class InvalidPriceInput(InputError):
    pass


class InvalidCurveInput(InputError):
    pass


# Collaborator errors

class CollaboratorError(LaunchError):
    """Failure reported by an external system"""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT,
                 tx_hash: Optional[str] = None):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.tx_hash = tx_hash

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def __str__(self) -> str:
        return f"[{self.kind.value}] {super().__str__()}"


class PublishError(CollaboratorError):
    pass


class MintError(CollaboratorError):
    pass


class ProvisionError(CollaboratorError):
    pass


# Orchestration errors

class LaunchNotFound(LaunchError):
    pass


class InvalidLaunchTransition(LaunchError):
    pass


class LaunchBusy(LaunchError):
    """Another driver holds the lease for this launch"""
