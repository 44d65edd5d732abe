"""Canopy exception hierarchy.

All Canopy-specific exceptions inherit from CanopyError.
"""


class CanopyError(Exception):
    """Base exception for all Canopy errors."""


class MissionNotFoundError(CanopyError):
    """Raised when a mission id lookup fails."""

    def __init__(self, mission_id: str) -> None:
        self.mission_id = mission_id
        super().__init__(f"Mission not found: {mission_id}")


class AgentNotFoundError(CanopyError):
    """Raised when an agent id lookup fails."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class InvalidTransitionError(CanopyError):
    """Raised when a status change would move backwards or leave a terminal state."""

    def __init__(self, kind: str, current: str, target: str) -> None:
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid {kind} transition: {current} -> {target}"
        )


class SpawnError(CanopyError):
    """Raised when a spawn request cannot be turned into agent records."""


class StoreError(CanopyError):
    """Raised when the durable store rejects a write."""


class ClaimLostError(StoreError):
    """Raised when an agent's claim was taken away before its write-back.

    A reaper drain or credit pause clears the claim; the late iteration's
    writes are rolled back instead of overwriting that decision.
    """

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Claim lost for agent {agent_id}; write-back discarded")


class CompressionError(CanopyError):
    """Raised when the summarization call behind compression fails."""


class SynthesisError(CanopyError):
    """Raised when mission synthesis cannot run."""


class DispatchError(CanopyError):
    """Raised when a dispatch request is malformed (unknown mode, etc.)."""


class SearchError(CanopyError):
    """Raised when a search provider is misconfigured or fails."""
