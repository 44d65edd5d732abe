"""Canopy: tick-driven scheduling for trees of collaborating agents.

A mission starts with one root agent. Agents spawn children under a
spawn budget, are claimed one at a time per mission per tick, compress
their own history, read their children's results, and converge into a
single synthesized report.
"""

from canopy._version import __version__

# Core entry point
from canopy.canopy import Canopy

# Configuration and budget
from canopy.models.budget import DEFAULT_BUDGET, BudgetSnapshot, SpawnBudget, SpawnDecision
from canopy.models.config import CanopyConfig

# Domain models
from canopy.models.iteration import IterationOutcome, TickAction, TickResult, TransitionKind
from canopy.models.mission import (
    AgentInfo,
    AgentRole,
    AgentStatus,
    FindingInfo,
    MissionInfo,
    MissionStatus,
    ReportSectionInfo,
)
from canopy.models.result import AgentResult, ParsedResult, UnparsedResult
from canopy.models.tree import AgentTree

# Operations
from canopy.engine.dispatch import Dispatcher
from canopy.engine.iteration import IterationEngine, plan_transition
from canopy.engine.scheduler import claim_next_agent
from canopy.operations.compression import compress_history, should_compress
from canopy.operations.parse import extract_last_json_object, parse_agent_response
from canopy.operations.reaper import reap_stale_missions
from canopy.operations.spawn import can_spawn, compute_depth
from canopy.operations.synthesis import mark_synthesizing_if_terminal, run_synthesis

# Collaborators
from canopy.billing import BillingCollaborator, LedgerBilling, NullBilling
from canopy.llm.protocols import Generation, WorkProducer
from canopy.storage.store import CanopyStore

# Exceptions
from canopy.exceptions import (
    AgentNotFoundError,
    CanopyError,
    CompressionError,
    DispatchError,
    InvalidTransitionError,
    MissionNotFoundError,
    SearchError,
    SpawnError,
    StoreError,
    SynthesisError,
)

__all__ = [
    "__version__",
    "Canopy",
    "CanopyConfig",
    "SpawnBudget",
    "DEFAULT_BUDGET",
    "SpawnDecision",
    "BudgetSnapshot",
    "MissionInfo",
    "MissionStatus",
    "AgentInfo",
    "AgentRole",
    "AgentStatus",
    "FindingInfo",
    "ReportSectionInfo",
    "AgentTree",
    "AgentResult",
    "ParsedResult",
    "UnparsedResult",
    "IterationOutcome",
    "TransitionKind",
    "TickAction",
    "TickResult",
    "Dispatcher",
    "IterationEngine",
    "plan_transition",
    "claim_next_agent",
    "can_spawn",
    "compute_depth",
    "parse_agent_response",
    "extract_last_json_object",
    "should_compress",
    "compress_history",
    "mark_synthesizing_if_terminal",
    "run_synthesis",
    "reap_stale_missions",
    "BillingCollaborator",
    "NullBilling",
    "LedgerBilling",
    "WorkProducer",
    "Generation",
    "CanopyStore",
    "CanopyError",
    "MissionNotFoundError",
    "AgentNotFoundError",
    "InvalidTransitionError",
    "SpawnError",
    "StoreError",
    "CompressionError",
    "SynthesisError",
    "DispatchError",
    "SearchError",
]
