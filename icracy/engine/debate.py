"""
Debate orchestration.

A debate dispatches one evaluation request per delegate concurrently, waits
for every call to settle, records the outcomes in dispatch order inside a
single transaction and closes with a consensus verdict.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from ..errors import DelegateCallFailed, InvalidInput, NotFound
from ..settings import DEFAULT_DELEGATES, MAX_DELEGATES
from ..storage import reports
from ..storage.store import Store
from .consensus import compute_consensus
from .delegates import query_delegate
from .events import EventBus
from .models import DelegateOutcome
from .parsers import infer_topic, normalize_vote

if TYPE_CHECKING:
    from ..adapters.catalog import CatalogService

logger = logging.getLogger(__name__)

STANCES = ("intelligent", "idiotic", "neutral")


def pick_delegates(
    store: Store,
    delegate_ids: Iterable[Any] | None,
    fallback_limit: int = DEFAULT_DELEGATES,
    cap: int = MAX_DELEGATES,
) -> list[str]:
    """
    Choose the delegates for a debate.

    Ids are trimmed, empties dropped, duplicates removed (first occurrence wins)
    and unknown ids filtered against the catalog. An empty result falls back
    to the top ``fallback_limit`` delegates by rank.

    Returns:
        At most ``cap`` known delegate ids, in the order supplied
    """
    requested: list[str] = []
    for raw in delegate_ids or []:
        model_id = str(raw).strip()
        if model_id and model_id not in requested:
            requested.append(model_id)

    known = store.known_delegate_ids(requested)
    picked = [model_id for model_id in requested if model_id in known]

    if not picked:
        picked = [row["id"] for row in store.list_delegates(fallback_limit)]

    return picked[:cap]


async def _settle(model_id: str, title: str, body: str) -> DelegateOutcome:
    try:
        return await query_delegate(model_id, title, body)
    except DelegateCallFailed as e:
        logger.warning("Delegate %s failed: %s", model_id, e.reason)
        return DelegateOutcome.failure(model_id, e.reason)


async def collect_outcomes(delegate_ids: list[str], title: str, body: str) -> list[DelegateOutcome]:
    """
    Query every delegate concurrently and wait for all of them to settle.

    Returns:
        One outcome per delegate, in dispatch order; failures carry ``error``
    """
    results = await asyncio.gather(
        *[_settle(model_id, title, body) for model_id in delegate_ids],
        return_exceptions=True,
    )

    outcomes = []
    for model_id, result in zip(delegate_ids, results):
        if isinstance(result, Exception):
            logger.warning("Delegate %s raised: %s", model_id, result)
            outcomes.append(DelegateOutcome.failure(model_id, str(result) or type(result).__name__))
        else:
            outcomes.append(result)
    return outcomes


async def run_debate(
    store: Store,
    bus: EventBus,
    resolution_id: str,
    title: str,
    body: str,
    delegate_ids: list[str],
) -> dict[str, Any]:
    """
    Run one complete debate for a resolution.

    Individual delegate failures never abort the debate. A PersistenceFailure
    while recording outcomes propagates and leaves the debate ``active``.

    Args:
        store: Persistence store
        bus: Event bus for live updates
        resolution_id: Resolution under debate
        title: Resolution title
        body: Resolution text
        delegate_ids: Delegates to query, already picked

    Returns:
        The hydrated debate view
    """
    debate_id = store.open_debate(resolution_id, title)
    logger.info("Debate %s opened with %d delegates", debate_id, len(delegate_ids))
    bus.publish(
        debate_id,
        "debate_started",
        {"debateId": debate_id, "resolutionId": resolution_id, "title": title},
    )

    outcomes = await collect_outcomes(delegate_ids, title, body)

    store.record_delegate_outcomes(debate_id, outcomes, store.delegate_metadata(delegate_ids))
    consensus = compute_consensus(outcomes)
    store.close_debate(debate_id, resolution_id, consensus)
    logger.info("Debate %s closed: %s", debate_id, consensus.verdict)

    bus.publish(
        debate_id,
        "debate_completed",
        {
            "debateId": debate_id,
            "consensus": consensus.as_dict(),
            "totalDelegates": len(outcomes),
        },
    )

    return store.get_debate_view(debate_id)


def _require_text(title: Any, body: Any) -> tuple[str, str]:
    title = str(title or "").strip()
    body = str(body or "").strip()
    if not title or not body:
        raise InvalidInput("title and body are required")
    return title, body


def create_draft(
    store: Store, user_id: str, title: Any, body: Any, topic: str | None = None
) -> dict[str, Any]:
    title, body = _require_text(title, body)
    return store.create_resolution(user_id, title, body, topic or infer_topic(title, body))


def update_draft(
    store: Store, draft_id: str, user_id: str, title: Any, body: Any, topic: str | None = None
) -> dict[str, Any]:
    """
    Raises:
        InvalidInput: If title or body is empty
        NotFound: If the draft does not exist
        Forbidden: If the draft belongs to another user
    """
    title, body = _require_text(title, body)
    draft = store.update_draft(draft_id, user_id, title, body, topic or infer_topic(title, body))
    if draft is None:
        raise NotFound("Draft not found")
    return draft


def get_draft(store: Store, draft_id: str, user_id: str) -> dict[str, Any]:
    draft = store.get_draft(draft_id, user_id)
    if draft is None:
        raise NotFound("Draft not found")
    return draft


async def submit(
    store: Store,
    bus: EventBus,
    user_id: str,
    title: Any,
    body: Any,
    delegate_ids: Iterable[Any] | None = None,
    topic: str | None = None,
    user_vote: str | None = None,
    catalog: "CatalogService | None" = None,
) -> dict[str, Any]:
    """
    Submit a resolution and debate it to a verdict.

    Args:
        store: Persistence store
        bus: Event bus for live updates
        user_id: Author of the resolution
        title: Resolution title (must be non-empty after trimming)
        body: Resolution text (must be non-empty after trimming)
        delegate_ids: Requested delegates; filtered, deduplicated and capped
        topic: Topic tag; inferred from the text when omitted
        user_vote: Optional vote the author casts on their own debate
        catalog: Catalog service refreshed before delegates are picked

    Returns:
        The hydrated debate view

    Raises:
        InvalidInput: If title or body is empty (nothing is written)
    """
    title, body = _require_text(title, body)
    topic = topic or infer_topic(title, body)

    if catalog is not None:
        await catalog.eligible()
    picked = pick_delegates(store, delegate_ids)

    resolution = store.create_resolution(user_id, title, body, topic, status="submitted")
    store.record_delegate_picks(resolution["id"], picked)

    view = await run_debate(store, bus, resolution["id"], title, body, picked)

    if user_vote:
        store.upsert_human_vote(view["id"], user_id, normalize_vote(user_vote))
        view = store.get_debate_view(view["id"])

    reports.persist_all_snapshots(store)
    return view


def record_human_vote(
    store: Store, bus: EventBus, debate_id: str, user_id: str, vote: Any
) -> dict[str, Any]:
    """
    Record (or replace) a user's vote on a debate.

    Raises:
        NotFound: If the debate does not exist
    """
    debate = store.get_debate_row(debate_id)
    if debate is None:
        raise NotFound("Debate not found")

    normalized = normalize_vote(vote)
    saved = store.upsert_human_vote(debate_id, user_id, normalized)
    aligned = normalized == debate["verdict"]

    bus.publish(debate_id, "human_vote", {"userId": user_id, "vote": normalized, "aligned": aligned})
    reports.persist_all_snapshots(store)

    return {
        "debateId": debate_id,
        "userId": user_id,
        "vote": normalized,
        "aligned": aligned,
        "createdAt": saved["createdAt"],
    }


def record_human_argument(
    store: Store, bus: EventBus, debate_id: str, user: dict[str, Any], content: Any, stance: Any = None
) -> dict[str, Any]:
    """
    Append a human argument to a debate transcript. Consensus is unaffected.

    Raises:
        NotFound: If the debate does not exist
        InvalidInput: If content is empty
    """
    stance_input = str(stance or "neutral").strip().lower()
    stance_value = stance_input if stance_input in STANCES else "neutral"

    if store.get_debate_row(debate_id) is None:
        raise NotFound("Debate not found")

    text = str(content or "").strip()
    if not text:
        raise InvalidInput("content is required")

    payload = store.add_human_argument(debate_id, user, stance_value, text)
    bus.publish(debate_id, "human_argument", payload)
    return payload
