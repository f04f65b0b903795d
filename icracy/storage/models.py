"""SQLAlchemy models for the assembly database."""

from uuid import uuid4

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    handle: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="citizen")
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


class DelegateModel(Base):
    """Catalog entry for a delegate, refreshed by catalog sync."""

    __tablename__ = "delegate_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    slug: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    weekly_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_tokens_text: Mapped[str | None] = mapped_column(String, nullable=True)
    context_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prompt_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    completion_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    rank_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_delegate_models_rank", "rank_position"),)


class Resolution(Base):
    """A proposed statement: draft -> submitted -> debating -> closed."""

    __tablename__ = "resolutions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    author_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_resolutions_author", "author_user_id"),
        Index("idx_resolutions_status", "status"),
    )


class ResolutionDelegatePick(Base):
    __tablename__ = "resolution_delegate_picks"

    resolution_id: Mapped[str] = mapped_column(
        ForeignKey("resolutions.id", ondelete="CASCADE"), primary_key=True
    )
    model_id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)


class Debate(Base):
    """One evaluation round for a resolution: active -> closed."""

    __tablename__ = "debates"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    resolution_id: Mapped[str] = mapped_column(
        ForeignKey("resolutions.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, nullable=False)
    verdict: Mapped[str | None] = mapped_column(String, nullable=True)
    intelligent_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    idiotic_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    intelligent_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    idiotic_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_debates_resolution", "resolution_id"),
        Index("idx_debates_status_created", "status", "created_at"),
    )


class DebateMessage(Base):
    """Append-only transcript entry. ``seq`` preserves insertion order."""

    __tablename__ = "debate_messages"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String, unique=True, nullable=False, default=new_id)
    debate_id: Mapped[str] = mapped_column(
        ForeignKey("debates.id", ondelete="CASCADE"), nullable=False
    )
    actor_type: Mapped[str] = mapped_column(String, nullable=False)  # system, delegate, human
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_name: Mapped[str] = mapped_column(String, nullable=False)
    stance: Mapped[str] = mapped_column(String, nullable=False)  # intelligent, idiotic, neutral
    content: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_messages_debate_seq", "debate_id", "seq"),)


class DelegateVote(Base):
    """One delegate's outcome in one debate. Either ``vote`` or ``error`` is set."""

    __tablename__ = "delegate_votes"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String, unique=True, nullable=False, default=new_id)
    debate_id: Mapped[str] = mapped_column(
        ForeignKey("debates.id", ondelete="CASCADE"), nullable=False
    )
    model_id: Mapped[str] = mapped_column(String, nullable=False)
    vote: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    argument: Mapped[str | None] = mapped_column(Text, nullable=True)
    rebuttal: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_output: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, default="openrouter")
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_delegate_votes_debate", "debate_id"),)


class HumanVote(Base):
    __tablename__ = "human_votes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    debate_id: Mapped[str] = mapped_column(
        ForeignKey("debates.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    vote: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("debate_id", "user_id", name="uq_human_votes_debate_user"),
        Index("idx_human_votes_debate", "debate_id"),
    )


class HumanArgument(Base):
    __tablename__ = "human_arguments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    debate_id: Mapped[str] = mapped_column(
        ForeignKey("debates.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    stance: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)


class LeaderboardSnapshot(Base):
    __tablename__ = "leaderboard_snapshots"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    period: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard_entries"

    snapshot_id: Mapped[str] = mapped_column(
        ForeignKey("leaderboard_snapshots.id", ondelete="CASCADE"), primary_key=True
    )
    rank: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    alignment_score: Mapped[int] = mapped_column(Integer, nullable=False)
    submissions: Mapped[int] = mapped_column(Integer, nullable=False)
    correct_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False)
