"""Response schemas the AI providers must conform to."""

from typing import Literal

from pydantic import BaseModel, Field


class AgentComment(BaseModel):
    """A single finding reported by a review agent."""

    filename: str
    snippet: str = Field(description="Exact code copied from the diff the comment refers to")
    body: str
    suggestion: str | None = None
    severity: str = Field(description="CRITICAL, HIGH, MEDIUM or LOW")
    confidence: float = Field(ge=0.0, le=1.0)


class AgentCommentList(BaseModel):
    comments: list[AgentComment] = Field(default_factory=list)


class SummaryResponse(BaseModel):
    summary: str


class VerifierVerdict(BaseModel):
    """Second-opinion verdict on one review comment."""

    verdict: Literal["approve", "reject"]
    reject_reason: str | None = None


class ReplyResponse(BaseModel):
    reply: str


class DescriptionResponse(BaseModel):
    description: str


class ContextSelection(BaseModel):
    files: list[str] = Field(default_factory=list)
