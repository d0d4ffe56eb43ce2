"""Knowledge search models."""

from pydantic import BaseModel, Field


class KBResult(BaseModel):
    """Chunk returned from a knowledge search call."""

    content: str
    score: float
    source: str
    metadata: dict = Field(default_factory=dict)


class KBQuery(BaseModel):
    """Read-only search request scoped to one customer or rule set."""

    scope: str
    query: str
    limit: int = 3
    min_score: float = 0.5
