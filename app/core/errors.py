"""
Exception hierarchy for the orchestrator and its outbound collaborators.
"""

from typing import Optional


class AgentGError(RuntimeError):
    """Base error for orchestrator operations."""


class RemoteCallError(AgentGError):
    """Transport-level failure calling a remote endpoint (connect error, timeout)."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class DelegationError(AgentGError):
    """A domain agent could not be reached or rejected the delegated sub-task."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class VoiceSynthesisError(AgentGError):
    """Voice synthesis failed after exhausting all attempts."""


class TelephonyError(AgentGError):
    """The telephony provider refused or failed to start a call."""


class StoreError(AgentGError):
    """The backing store failed to read or persist a record."""


class TranscriptionError(AgentGError):
    """Speech-to-text failed or returned nothing usable."""


class ChannelError(AgentGError):
    """A chat channel could not deliver or fetch content."""
