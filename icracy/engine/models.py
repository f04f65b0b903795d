"""Pure dataclasses for the debate pipeline."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

INTELLIGENT = "Intelligent"
IDIOTIC = "Idiotic"


def to_iso(moment: datetime) -> str:
    """Format a UTC datetime as ISO-8601 with millisecond precision and a Z suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


@dataclass
class DelegateOutcome:
    """Settled result of one delegate call. Exactly one of ``vote``/``error`` is set."""

    model_id: str
    vote: str | None = None
    confidence: int | None = None
    argument: str | None = None
    rebuttal: str | None = None
    raw: str | None = None
    error: str | None = None
    source: str = "openrouter"

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, model_id: str, reason: str) -> "DelegateOutcome":
        return cls(model_id=model_id, error=reason)


@dataclass(frozen=True)
class Consensus:
    verdict: str
    intelligent_votes: int
    idiotic_votes: int
    total_votes: int
    intelligent_pct: int
    idiotic_pct: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict,
            "intelligentVotes": self.intelligent_votes,
            "idioticVotes": self.idiotic_votes,
            "totalVotes": self.total_votes,
            "intelligentPct": self.intelligent_pct,
            "idioticPct": self.idiotic_pct,
        }
