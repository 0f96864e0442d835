"""
Data model shared by the pipeline stages.

Dataclasses for ephemeral per-run data, pydantic models for what is persisted
in state.json.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Per-run data (never persisted)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SourceItem:
    """An article reference as returned by the bookmark provider."""
    id: str
    title: str
    source_url: str = ""
    tags: FrozenSet[str] = frozenset()


@dataclass
class ExtractedArticle:
    """Plain-text rendition of one item, owned by the worker processing it."""
    id: str
    title: str
    source_name: str
    body: str
    announcement: str

    @property
    def full_text(self) -> str:
        return f"{self.announcement}\n\n{self.body}"


@dataclass
class SynthesisResult:
    audio: bytes
    duration_seconds: int


@dataclass
class RunReport:
    """Summary of one orchestrator run."""
    discovered: int = 0
    pending: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------
class Episode(BaseModel):
    """One successfully synthesized item. Immutable once committed."""
    id: str
    title: str
    source: str = ""
    audio_ref: str
    duration_seconds: int = Field(ge=0)
    published_at: datetime


class PipelineState(BaseModel):
    """Everything the pipeline has processed, as stored on disk."""
    episodes: Dict[str, Episode] = Field(default_factory=dict)
    last_run_at: Optional[datetime] = None
