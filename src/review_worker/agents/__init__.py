"""Review agents for the review worker."""

from review_worker.agents.base import AgentReview, ReviewAgent
from review_worker.agents.patterns import ArchitectureAgent, ConventionsAgent
from review_worker.agents.performance import CorrectnessAgent, PerformanceAgent
from review_worker.agents.security import SecurityAgent

__all__ = [
    "AgentReview",
    "ArchitectureAgent",
    "ConventionsAgent",
    "CorrectnessAgent",
    "PerformanceAgent",
    "ReviewAgent",
    "SecurityAgent",
]
