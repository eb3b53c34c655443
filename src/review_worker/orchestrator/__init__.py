"""Orchestrator components for the review worker."""

from review_worker.orchestrator.aggregator import ReviewAggregator, comment_signature
from review_worker.orchestrator.orchestrator import (
    AgentOrchestrator,
    MultiAgentResult,
    OrchestratorConfig,
    create_default_agents,
)
from review_worker.orchestrator.verifier import CommentVerifier, VerificationResult

__all__ = [
    "AgentOrchestrator",
    "CommentVerifier",
    "MultiAgentResult",
    "OrchestratorConfig",
    "ReviewAggregator",
    "VerificationResult",
    "comment_signature",
    "create_default_agents",
]
