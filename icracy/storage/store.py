"""
Persistence store for resolutions, debates, votes and transcripts.

All writes go through ``Store.transaction()``: a failed write rolls back the
whole unit and surfaces as PersistenceFailure.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..engine.models import Consensus, DelegateOutcome, now_iso
from ..errors import Forbidden, PersistenceFailure
from ..settings import DB_URL
from .models import (
    Base,
    Debate,
    DebateMessage,
    DelegateModel,
    DelegateVote,
    HumanArgument,
    HumanVote,
    Resolution,
    ResolutionDelegatePick,
    User,
    new_id,
)

logger = logging.getLogger(__name__)

CLERK_NAME = "Assembly Clerk"


def _engine_options(url: str) -> dict[str, Any]:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return {}

    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if not parsed.database or parsed.database == ":memory:":
        # One shared connection so every session sees the same in-memory database
        options["poolclass"] = StaticPool
    else:
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return options


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def user_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "handle": user.handle,
        "displayName": user.display_name,
        "role": user.role,
    }


def delegate_dict(model: DelegateModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "slug": model.slug,
        "displayName": model.display_name,
        "provider": model.provider,
        "weeklyTokens": model.weekly_tokens,
        "weeklyTokensText": model.weekly_tokens_text,
        "contextLength": model.context_length,
        "promptPrice": model.prompt_price,
        "completionPrice": model.completion_price,
        "rank": model.rank_position,
        "sourceUpdatedAt": model.source_updated_at,
    }


def resolution_dict(resolution: Resolution) -> dict[str, Any]:
    return {
        "id": resolution.id,
        "authorUserId": resolution.author_user_id,
        "title": resolution.title,
        "body": resolution.body,
        "topic": resolution.topic,
        "status": resolution.status,
        "createdAt": resolution.created_at,
        "updatedAt": resolution.updated_at,
    }


def message_dict(message: DebateMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "actorType": message.actor_type,
        "actorId": message.actor_id,
        "actorName": message.actor_name,
        "stance": message.stance,
        "content": message.content,
        "confidence": message.confidence,
        "createdAt": message.created_at,
    }


def consensus_dict(debate: Debate) -> dict[str, Any]:
    return {
        "verdict": debate.verdict,
        "intelligentVotes": debate.intelligent_votes,
        "idioticVotes": debate.idiotic_votes,
        "totalVotes": debate.total_votes,
        "intelligentPct": debate.intelligent_pct,
        "idioticPct": debate.idiotic_pct,
    }


def delegate_label(model_id: str, display_name: str | None, provider: str | None) -> tuple[str, str]:
    """Display name and provider, falling back to the model id and its prefix."""
    return display_name or model_id, provider or model_id.split("/")[0] or "unknown"


def _delegate_result_dict(vote: DelegateVote, meta: DelegateModel | None) -> dict[str, Any]:
    display_name, provider = delegate_label(
        vote.model_id, meta.display_name if meta else None, meta.provider if meta else None
    )
    return {
        "modelId": vote.model_id,
        "displayName": display_name,
        "provider": provider,
        "vote": vote.vote,
        "confidence": vote.confidence,
        "argument": vote.argument,
        "rebuttal": vote.rebuttal,
        "error": vote.error,
        "createdAt": vote.created_at,
        "source": vote.source,
    }


class Store:
    """SQLAlchemy-backed store. One instance per database."""

    def __init__(self, url: str = DB_URL) -> None:
        self.url = url
        self.engine: Engine = create_engine(url, **_engine_options(url))
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only session."""
        with self._sessions() as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Session committed on success and rolled back on any error.

        Raises:
            PersistenceFailure: If the database rejects any write in the unit
        """
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("Transaction rolled back")
            raise PersistenceFailure(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Users
    # =========================================================================

    def ensure_user(
        self, user_id: str, handle: str, display_name: str, role: str = "citizen"
    ) -> dict[str, Any]:
        timestamp = now_iso()
        with self.transaction() as s:
            user = s.get(User, user_id)
            if user is None:
                user = User(
                    id=user_id,
                    handle=handle,
                    display_name=display_name,
                    role=role,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                s.add(user)
            else:
                user.handle = handle
                user.display_name = display_name
                user.updated_at = timestamp
            s.flush()
            return user_dict(user)

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self.session() as s:
            user = s.get(User, user_id)
            return user_dict(user) if user else None

    def get_user_by_handle(self, handle: str) -> dict[str, Any] | None:
        with self.session() as s:
            user = s.scalars(select(User).where(User.handle == handle)).first()
            return user_dict(user) if user else None

    def list_users(self) -> list[dict[str, Any]]:
        with self.session() as s:
            return [user_dict(user) for user in s.scalars(select(User))]

    # =========================================================================
    # Delegate catalog
    # =========================================================================

    def upsert_delegate_models(self, agents: Iterable[dict[str, Any]]) -> None:
        """Insert or replace catalog rows (keys match DelegateModel columns)."""
        with self.transaction() as s:
            for agent in agents:
                s.merge(DelegateModel(**agent))

    def list_delegates(self, limit: int = 10) -> list[dict[str, Any]]:
        with self.session() as s:
            rows = s.scalars(
                select(DelegateModel)
                .order_by(DelegateModel.rank_position.asc(), DelegateModel.display_name.asc())
                .limit(limit)
            )
            return [delegate_dict(row) for row in rows]

    def known_delegate_ids(self, model_ids: Iterable[str]) -> set[str]:
        ids = list(model_ids)
        if not ids:
            return set()
        with self.session() as s:
            return set(s.scalars(select(DelegateModel.id).where(DelegateModel.id.in_(ids))))

    def delegate_metadata(self, model_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = list(model_ids)
        with self.session() as s:
            rows = s.scalars(select(DelegateModel).where(DelegateModel.id.in_(ids)))
            return {row.id: delegate_dict(row) for row in rows}

    # =========================================================================
    # Resolutions and drafts
    # =========================================================================

    def create_resolution(
        self, author_user_id: str, title: str, body: str, topic: str, status: str = "draft"
    ) -> dict[str, Any]:
        timestamp = now_iso()
        with self.transaction() as s:
            resolution = Resolution(
                id=new_id(),
                author_user_id=author_user_id,
                title=title,
                body=body,
                topic=topic,
                status=status,
                created_at=timestamp,
                updated_at=timestamp,
            )
            s.add(resolution)
            s.flush()
            return resolution_dict(resolution)

    def get_resolution(self, resolution_id: str) -> dict[str, Any] | None:
        with self.session() as s:
            resolution = s.get(Resolution, resolution_id)
            return resolution_dict(resolution) if resolution else None

    def get_draft(self, draft_id: str, user_id: str) -> dict[str, Any] | None:
        """
        Return a draft owned by ``user_id``.

        Raises:
            Forbidden: If the draft belongs to another user
        """
        with self.session() as s:
            draft = s.get(Resolution, draft_id)
            if draft is None or draft.status != "draft":
                return None
            if draft.author_user_id != user_id:
                raise Forbidden("Not allowed")
            return resolution_dict(draft)

    def update_draft(
        self, draft_id: str, user_id: str, title: str, body: str, topic: str
    ) -> dict[str, Any] | None:
        """
        Update a draft's text. Submitted resolutions are left untouched.

        Raises:
            Forbidden: If the draft belongs to another user
        """
        with self.transaction() as s:
            draft = s.get(Resolution, draft_id)
            if draft is None:
                return None
            if draft.author_user_id != user_id:
                raise Forbidden("You do not own this draft")
            if draft.status == "draft":
                draft.title = title
                draft.body = body
                draft.topic = topic
                draft.updated_at = now_iso()
            s.flush()
            return resolution_dict(draft)

    def record_delegate_picks(self, resolution_id: str, model_ids: Iterable[str]) -> None:
        timestamp = now_iso()
        with self.transaction() as s:
            for model_id in model_ids:
                if s.get(ResolutionDelegatePick, (resolution_id, model_id)) is None:
                    s.add(
                        ResolutionDelegatePick(
                            resolution_id=resolution_id, model_id=model_id, created_at=timestamp
                        )
                    )

    # =========================================================================
    # Debate lifecycle
    # =========================================================================

    @staticmethod
    def _add_message(
        s: Session,
        debate_id: str,
        actor_type: str,
        actor_name: str,
        stance: str,
        content: str,
        created_at: str,
        actor_id: str | None = None,
        confidence: int | None = None,
    ) -> DebateMessage:
        message = DebateMessage(
            id=new_id(),
            debate_id=debate_id,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=actor_name,
            stance=stance,
            content=content,
            confidence=confidence,
            created_at=created_at,
        )
        s.add(message)
        s.flush()
        return message

    def open_debate(self, resolution_id: str, title: str) -> str:
        """Create an active debate, mark the resolution as debating and log the opening."""
        timestamp = now_iso()
        with self.transaction() as s:
            debate = Debate(
                id=new_id(),
                resolution_id=resolution_id,
                status="active",
                created_at=timestamp,
                updated_at=timestamp,
            )
            s.add(debate)
            s.flush()

            resolution = s.get(Resolution, resolution_id)
            if resolution is not None:
                resolution.status = "debating"
                resolution.updated_at = timestamp

            self._add_message(
                s,
                debate.id,
                "system",
                CLERK_NAME,
                "neutral",
                f"Debate opened for resolution: {title}",
                timestamp,
            )
            return debate.id

    def record_delegate_outcomes(
        self,
        debate_id: str,
        outcomes: list[DelegateOutcome],
        metadata: dict[str, dict[str, Any]],
    ) -> None:
        """
        Write one vote row and one transcript message per outcome, all or nothing.

        Rows are written in the order of ``outcomes``.
        """
        with self.transaction() as s:
            for outcome in outcomes:
                meta = metadata.get(outcome.model_id) or {}
                display_name, _ = delegate_label(outcome.model_id, meta.get("displayName"), None)
                created_at = now_iso()

                if outcome.failed:
                    vote = DelegateVote(
                        id=new_id(),
                        debate_id=debate_id,
                        model_id=outcome.model_id,
                        error=outcome.error,
                        source=outcome.source,
                        created_at=created_at,
                    )
                    stance = "neutral"
                    content = f"Delegate failed to respond: {outcome.error}"
                else:
                    vote = DelegateVote(
                        id=new_id(),
                        debate_id=debate_id,
                        model_id=outcome.model_id,
                        vote=outcome.vote,
                        confidence=outcome.confidence,
                        argument=outcome.argument,
                        rebuttal=outcome.rebuttal,
                        raw_output=outcome.raw,
                        source=outcome.source,
                        created_at=created_at,
                    )
                    stance = outcome.vote.lower()
                    content = outcome.argument

                s.add(vote)
                s.flush()
                self._add_message(
                    s,
                    debate_id,
                    "delegate",
                    display_name,
                    stance,
                    content,
                    created_at,
                    actor_id=outcome.model_id,
                    confidence=outcome.confidence,
                )

    def close_debate(self, debate_id: str, resolution_id: str, consensus: Consensus) -> None:
        """Store the verdict, close debate and resolution, and log the final verdict."""
        finalized_at = now_iso()
        with self.transaction() as s:
            debate = s.get(Debate, debate_id)
            debate.status = "closed"
            debate.verdict = consensus.verdict
            debate.intelligent_votes = consensus.intelligent_votes
            debate.idiotic_votes = consensus.idiotic_votes
            debate.total_votes = consensus.total_votes
            debate.intelligent_pct = consensus.intelligent_pct
            debate.idiotic_pct = consensus.idiotic_pct
            debate.updated_at = finalized_at

            resolution = s.get(Resolution, resolution_id)
            if resolution is not None:
                resolution.status = "closed"
                resolution.updated_at = finalized_at

            self._add_message(
                s,
                debate_id,
                "system",
                CLERK_NAME,
                "neutral",
                f"Final verdict: {consensus.verdict} "
                f"({consensus.intelligent_pct}% intelligent / {consensus.idiotic_pct}% idiotic)",
                finalized_at,
            )

    # =========================================================================
    # Human interaction
    # =========================================================================

    def upsert_human_vote(self, debate_id: str, user_id: str, vote: str) -> dict[str, Any]:
        """Insert or replace the vote keyed by (debate_id, user_id). Last write wins."""
        timestamp = now_iso()
        with self.transaction() as s:
            existing = s.scalars(
                select(HumanVote).where(
                    HumanVote.debate_id == debate_id, HumanVote.user_id == user_id
                )
            ).first()
            if existing is None:
                existing = HumanVote(
                    id=new_id(), debate_id=debate_id, user_id=user_id, vote=vote, created_at=timestamp
                )
                s.add(existing)
            else:
                existing.vote = vote
                existing.created_at = timestamp
            s.flush()
            return {
                "id": existing.id,
                "debateId": debate_id,
                "userId": user_id,
                "vote": existing.vote,
                "createdAt": existing.created_at,
            }

    def add_human_argument(
        self, debate_id: str, user: dict[str, Any], stance: str, content: str
    ) -> dict[str, Any]:
        created_at = now_iso()
        with self.transaction() as s:
            argument = HumanArgument(
                id=new_id(),
                debate_id=debate_id,
                user_id=user["id"],
                stance=stance,
                content=content,
                created_at=created_at,
            )
            s.add(argument)
            self._add_message(
                s,
                debate_id,
                "human",
                user["displayName"],
                stance,
                content,
                created_at,
                actor_id=user["id"],
            )
            return {
                "id": argument.id,
                "debateId": debate_id,
                "userId": user["id"],
                "userName": user["displayName"],
                "stance": stance,
                "content": content,
                "createdAt": created_at,
            }

    # =========================================================================
    # Debate read model
    # =========================================================================

    def get_debate_row(self, debate_id: str) -> dict[str, Any] | None:
        with self.session() as s:
            debate = s.get(Debate, debate_id)
            if debate is None:
                return None
            return {
                "id": debate.id,
                "resolutionId": debate.resolution_id,
                "status": debate.status,
                "verdict": debate.verdict,
            }

    def get_debate_view(self, debate_id: str) -> dict[str, Any] | None:
        """Fully hydrated debate: resolution, consensus, delegate results, messages, human votes."""
        with self.session() as s:
            row = s.execute(
                select(Debate, Resolution)
                .join(Resolution, Resolution.id == Debate.resolution_id)
                .where(Debate.id == debate_id)
            ).first()
            if row is None:
                return None
            debate, resolution = row

            delegate_rows = s.execute(
                select(DelegateVote, DelegateModel)
                .outerjoin(DelegateModel, DelegateModel.id == DelegateVote.model_id)
                .where(DelegateVote.debate_id == debate_id)
                .order_by(DelegateVote.seq.asc())
            ).all()

            messages = s.scalars(
                select(DebateMessage)
                .where(DebateMessage.debate_id == debate_id)
                .order_by(DebateMessage.seq.asc())
            )

            human_votes = s.execute(
                select(HumanVote, User)
                .join(User, User.id == HumanVote.user_id)
                .where(HumanVote.debate_id == debate_id)
                .order_by(HumanVote.created_at.asc())
            ).all()

            return {
                "id": debate.id,
                "createdAt": debate.created_at,
                "updatedAt": debate.updated_at,
                "status": debate.status,
                "verdict": debate.verdict,
                "consensus": consensus_dict(debate),
                "resolution": resolution_dict(resolution),
                "delegateResults": [_delegate_result_dict(v, m) for v, m in delegate_rows],
                "messages": [message_dict(m) for m in messages],
                "humanVotes": [
                    {
                        "id": vote.id,
                        "userId": vote.user_id,
                        "userName": user.display_name,
                        "vote": vote.vote,
                        "createdAt": vote.created_at,
                    }
                    for vote, user in human_votes
                ],
            }

    def list_messages(
        self, debate_id: str, limit: int | None = 100, offset: int = 0, newest_first: bool = False
    ) -> list[dict[str, Any]]:
        order = DebateMessage.seq.desc() if newest_first else DebateMessage.seq.asc()
        with self.session() as s:
            messages = s.scalars(
                select(DebateMessage)
                .where(DebateMessage.debate_id == debate_id)
                .order_by(order)
                .limit(limit)
                .offset(offset)
            )
            return [message_dict(m) for m in messages]

    def get_consensus_row(self, debate_id: str) -> dict[str, Any] | None:
        with self.session() as s:
            debate = s.get(Debate, debate_id)
            if debate is None:
                return None
            return {
                "debateId": debate.id,
                **consensus_dict(debate),
                "status": debate.status,
                "updatedAt": debate.updated_at,
            }

    def latest_debate_id(self, by: str = "created_at") -> str | None:
        column = Debate.updated_at if by == "updated_at" else Debate.created_at
        with self.session() as s:
            return s.scalars(select(Debate.id).order_by(column.desc()).limit(1)).first()
