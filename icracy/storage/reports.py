"""
Read-side reports: archive, facets, alignment stats and leaderboard.

Alignment compares each human vote with the debate's final verdict.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func, or_, select

from ..engine.models import now_iso, to_iso
from ..engine.parsers import normalize_vote, round_half_up
from .models import (
    Debate,
    DelegateModel,
    DelegateVote,
    HumanVote,
    LeaderboardEntry,
    LeaderboardSnapshot,
    Resolution,
    User,
    new_id,
)
from .store import Store, consensus_dict, delegate_label

PERIODS = ("weekly", "monthly", "all_time")

_PERIOD_DAYS = {"weekly": 7, "monthly": 30}


def period_start(period: str) -> str | None:
    """ISO timestamp where a period begins, or None for all time."""
    days = _PERIOD_DAYS.get(period)
    if days is None:
        return None
    return to_iso(datetime.now(timezone.utc) - timedelta(days=days))


def normalize_period(period: str | None, default: str = "weekly") -> str:
    value = (period or default).lower()
    return value if value in PERIODS else default


# =============================================================================
# Archive
# =============================================================================


def _delegate_ref(model_id: str, display_name: str | None, provider: str | None) -> dict[str, str]:
    display_name, provider = delegate_label(model_id, display_name, provider)
    return {"modelId": model_id, "displayName": display_name, "provider": provider}


def list_archive(
    store: Store,
    verdict: str | None = None,
    topic: str | None = None,
    delegate: str | None = None,
    q: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """
    List closed debates, newest first.

    Args:
        verdict: Filter by verdict (normalized, so "idi" matches Idiotic)
        topic: Exact topic match
        delegate: Model id, exact or substring, that took part in the debate
        q: Substring of the resolution title or body
        date_from: Earliest debate creation timestamp (inclusive)
        date_to: Latest debate creation timestamp (inclusive)
    """
    query = (
        select(Debate, Resolution, User)
        .join(Resolution, Resolution.id == Debate.resolution_id)
        .join(User, User.id == Resolution.author_user_id)
        .where(Debate.status == "closed")
    )

    if verdict:
        query = query.where(Debate.verdict == normalize_vote(verdict))
    if topic:
        query = query.where(Resolution.topic == topic)
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(Resolution.title.like(pattern), Resolution.body.like(pattern)))
    if date_from:
        query = query.where(Debate.created_at >= date_from)
    if date_to:
        query = query.where(Debate.created_at <= date_to)
    if delegate:
        query = query.where(
            select(DelegateVote.id)
            .where(
                DelegateVote.debate_id == Debate.id,
                or_(DelegateVote.model_id == delegate, DelegateVote.model_id.like(f"%{delegate}%")),
            )
            .exists()
        )

    query = query.order_by(Debate.created_at.desc()).limit(limit).offset(offset)

    items = []
    with store.session() as s:
        for debate, resolution, author in s.execute(query).all():
            delegates = s.execute(
                select(DelegateVote.model_id, DelegateModel.display_name, DelegateModel.provider)
                .outerjoin(DelegateModel, DelegateModel.id == DelegateVote.model_id)
                .where(DelegateVote.debate_id == debate.id)
                .order_by(DelegateVote.seq.asc())
            ).all()

            items.append(
                {
                    "id": debate.id,
                    "createdAt": debate.created_at,
                    "updatedAt": debate.updated_at,
                    "verdict": debate.verdict,
                    "consensus": consensus_dict(debate),
                    "title": resolution.title,
                    "resolution": resolution.body,
                    "topic": resolution.topic,
                    "authorUserId": resolution.author_user_id,
                    "authorName": author.display_name,
                    "delegates": [
                        _delegate_ref(model_id, name, provider) for model_id, name, provider in delegates
                    ],
                }
            )
    return items


def archive_facets(store: Store) -> dict[str, list[dict[str, Any]]]:
    """Counts by verdict, by topic and by delegate (top 20)."""
    with store.session() as s:
        verdict_count = func.count().label("count")
        verdicts = s.execute(
            select(Debate.verdict, verdict_count)
            .where(Debate.status == "closed")
            .group_by(Debate.verdict)
            .order_by(verdict_count.desc())
        ).all()

        topic_count = func.count().label("count")
        topics = s.execute(
            select(Resolution.topic, topic_count)
            .where(Resolution.status == "closed")
            .group_by(Resolution.topic)
            .order_by(topic_count.desc())
        ).all()

        delegate_count = func.count().label("count")
        delegates = s.execute(
            select(DelegateModel.display_name, DelegateModel.provider, delegate_count)
            .select_from(DelegateVote)
            .join(DelegateModel, DelegateModel.id == DelegateVote.model_id)
            .group_by(DelegateVote.model_id, DelegateModel.display_name, DelegateModel.provider)
            .order_by(delegate_count.desc())
            .limit(20)
        ).all()

    return {
        "verdicts": [{"verdict": verdict, "count": count} for verdict, count in verdicts],
        "topics": [{"topic": topic, "count": count} for topic, count in topics],
        "delegates": [
            {"name": name, "provider": provider, "count": count}
            for name, provider, count in delegates
        ],
    }


def debate_votes(store: Store, debate_id: str) -> dict[str, list[dict[str, Any]]]:
    """Delegate and human votes for one debate."""
    with store.session() as s:
        delegate_rows = s.execute(
            select(DelegateVote, DelegateModel)
            .outerjoin(DelegateModel, DelegateModel.id == DelegateVote.model_id)
            .where(DelegateVote.debate_id == debate_id)
            .order_by(DelegateVote.seq.asc())
        ).all()
        human_rows = s.execute(
            select(HumanVote, User)
            .join(User, User.id == HumanVote.user_id)
            .where(HumanVote.debate_id == debate_id)
            .order_by(HumanVote.created_at.asc())
        ).all()

    return {
        "delegateVotes": [
            {
                "id": vote.id,
                **_delegate_ref(
                    vote.model_id,
                    meta.display_name if meta else None,
                    meta.provider if meta else None,
                ),
                "vote": vote.vote,
                "confidence": vote.confidence,
                "createdAt": vote.created_at,
                "error": vote.error,
            }
            for vote, meta in delegate_rows
        ],
        "humanVotes": [
            {
                "id": vote.id,
                "userId": vote.user_id,
                "userName": user.display_name,
                "vote": vote.vote,
                "createdAt": vote.created_at,
            }
            for vote, user in human_rows
        ],
    }


# =============================================================================
# Alignment stats
# =============================================================================


def alignment_title(alignment_score: int, submissions: int) -> str:
    if alignment_score >= 90 and submissions >= 8:
        return "Grand Envoy"
    if alignment_score >= 75 and submissions >= 5:
        return "High Councillor"
    if alignment_score >= 60 and submissions >= 3:
        return "Senior Petitioner"
    return "Junior Petitioner"


def _aligned_case():
    return func.sum(case((HumanVote.vote == Debate.verdict, 1), else_=0))


def user_stats(store: Store, user_id: str, period: str = "all_time") -> dict[str, Any]:
    """
    Submission count, vote alignment and alignment score for one user.

    The score is 70% alignment percentage plus an activity bonus capped at 30.
    """
    start = period_start(period)

    submissions_query = select(func.count()).select_from(Resolution).where(
        Resolution.author_user_id == user_id, Resolution.status != "draft"
    )
    votes_query = (
        select(func.count(HumanVote.id), _aligned_case())
        .join(Debate, Debate.id == HumanVote.debate_id)
        .where(HumanVote.user_id == user_id)
    )
    if start:
        submissions_query = submissions_query.where(Resolution.created_at >= start)
        votes_query = votes_query.where(HumanVote.created_at >= start)

    with store.session() as s:
        submissions = s.scalar(submissions_query) or 0
        total_votes, aligned_votes = s.execute(votes_query).one()

    total_votes = total_votes or 0
    aligned_votes = aligned_votes or 0
    alignment_pct = round_half_up(aligned_votes / total_votes * 100) if total_votes else 0
    activity_bonus = min(30, submissions * 4 + total_votes * 2)
    alignment_score = round_half_up(alignment_pct * 0.7 + activity_bonus)

    return {
        "submissions": submissions,
        "totalVotes": total_votes,
        "alignedVotes": aligned_votes,
        "alignmentPct": alignment_pct,
        "alignmentScore": alignment_score,
        "title": alignment_title(alignment_score, submissions),
    }


def user_submissions(store: Store, user_id: str, limit: int = 30) -> list[dict[str, Any]]:
    with store.session() as s:
        rows = s.execute(
            select(Resolution, Debate)
            .outerjoin(Debate, Debate.resolution_id == Resolution.id)
            .where(Resolution.author_user_id == user_id)
            .order_by(Resolution.created_at.desc())
            .limit(limit)
        ).all()

    return [
        {
            "id": resolution.id,
            "title": resolution.title,
            "body": resolution.body,
            "topic": resolution.topic,
            "status": resolution.status,
            "createdAt": resolution.created_at,
            "updatedAt": resolution.updated_at,
            "debateId": debate.id if debate else None,
            "verdict": debate.verdict if debate else None,
            "totalVotes": debate.total_votes if debate else None,
            "intelligentPct": debate.intelligent_pct if debate else None,
            "idioticPct": debate.idiotic_pct if debate else None,
        }
        for resolution, debate in rows
    ]


def user_votes(store: Store, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
    with store.session() as s:
        rows = s.execute(
            select(HumanVote, Debate, Resolution.title)
            .join(Debate, Debate.id == HumanVote.debate_id)
            .join(Resolution, Resolution.id == Debate.resolution_id)
            .where(HumanVote.user_id == user_id)
            .order_by(HumanVote.created_at.desc())
            .limit(limit)
        ).all()

    return [
        {
            "id": vote.id,
            "vote": vote.vote,
            "createdAt": vote.created_at,
            "debateId": debate.id,
            "verdict": debate.verdict,
            "totalVotes": debate.total_votes,
            "title": title,
            "aligned": vote.vote == debate.verdict,
        }
        for vote, debate, title in rows
    ]


def user_timeline(store: Store, user_id: str, days: int = 30) -> list[dict[str, Any]]:
    """Per-day vote counts and alignment, most recent day first."""
    day = func.substr(HumanVote.created_at, 1, 10).label("day")
    with store.session() as s:
        rows = s.execute(
            select(day, func.count(HumanVote.id), _aligned_case())
            .join(Debate, Debate.id == HumanVote.debate_id)
            .where(HumanVote.user_id == user_id)
            .group_by(day)
            .order_by(day.desc())
            .limit(days)
        ).all()

    timeline = []
    for day_value, total_votes, aligned_votes in rows:
        aligned_votes = aligned_votes or 0
        timeline.append(
            {
                "day": day_value,
                "totalVotes": total_votes,
                "alignedVotes": aligned_votes,
                "alignmentPct": round_half_up(aligned_votes / total_votes * 100)
                if total_votes
                else 0,
            }
        )
    return timeline


# =============================================================================
# Leaderboard
# =============================================================================


def compute_leaderboard(store: Store, period: str = "weekly", limit: int = 100) -> list[dict[str, Any]]:
    """
    Rank active users by alignment score, then aligned votes, then submissions.

    Users with neither submissions nor votes in the period are left out.
    """
    rows = []
    for user in store.list_users():
        stats = user_stats(store, user["id"], period)
        if not stats["submissions"] and not stats["totalVotes"]:
            continue
        rows.append(
            {
                "userId": user["id"],
                "handle": user["handle"],
                "displayName": user["displayName"],
                "alignmentScore": stats["alignmentScore"],
                "alignmentPct": stats["alignmentPct"],
                "submissions": stats["submissions"],
                "totalVotes": stats["totalVotes"],
                "alignedVotes": stats["alignedVotes"],
                "title": stats["title"],
            }
        )

    rows.sort(key=lambda r: (-r["alignmentScore"], -r["alignedVotes"], -r["submissions"]))
    return [{**row, "rank": index} for index, row in enumerate(rows[:limit], start=1)]


def persist_leaderboard_snapshot(store: Store, period: str = "weekly") -> dict[str, Any]:
    snapshot_id = new_id()
    timestamp = now_iso()
    rows = compute_leaderboard(store, period, 100)

    with store.transaction() as s:
        s.add(LeaderboardSnapshot(id=snapshot_id, period=period, created_at=timestamp))
        s.flush()
        for row in rows:
            s.add(
                LeaderboardEntry(
                    snapshot_id=snapshot_id,
                    rank=row["rank"],
                    user_id=row["userId"],
                    alignment_score=row["alignmentScore"],
                    submissions=row["submissions"],
                    correct_votes=row["alignedVotes"],
                    total_votes=row["totalVotes"],
                )
            )

    return {"snapshotId": snapshot_id, "period": period, "createdAt": timestamp, "rows": rows}


def persist_all_snapshots(store: Store) -> list[dict[str, Any]]:
    return [persist_leaderboard_snapshot(store, period) for period in PERIODS]


def snapshot_history(store: Store, period: str = "weekly", limit: int = 12) -> list[dict[str, Any]]:
    with store.session() as s:
        snapshots = s.scalars(
            select(LeaderboardSnapshot)
            .where(LeaderboardSnapshot.period == period)
            .order_by(LeaderboardSnapshot.created_at.desc())
            .limit(limit)
        )
        return [
            {"id": snap.id, "period": snap.period, "createdAt": snap.created_at}
            for snap in snapshots
        ]


def rank_history(store: Store, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
    with store.session() as s:
        rows = s.execute(
            select(LeaderboardEntry, LeaderboardSnapshot)
            .join(LeaderboardSnapshot, LeaderboardSnapshot.id == LeaderboardEntry.snapshot_id)
            .where(LeaderboardEntry.user_id == user_id)
            .order_by(LeaderboardSnapshot.created_at.desc())
            .limit(limit)
        ).all()

    return [
        {
            "period": snap.period,
            "createdAt": snap.created_at,
            "rank": entry.rank,
            "alignmentScore": entry.alignment_score,
            "submissions": entry.submissions,
            "correctVotes": entry.correct_votes,
            "totalVotes": entry.total_votes,
        }
        for entry, snap in rows
    ]
