"""
Consensus aggregation for delegate votes.

Tallies settled delegate outcomes into an assembly-wide verdict.
"""

from collections.abc import Iterable

from .models import IDIOTIC, INTELLIGENT, Consensus, DelegateOutcome
from .parsers import round_half_up


def compute_consensus(outcomes: Iterable[DelegateOutcome]) -> Consensus:
    """
    Calculate the verdict and tallies for one debate.

    Failed outcomes are excluded from every count. On equal vote counts
    (including 0-0) the side with the larger summed confidence wins, and
    a further tie goes to Intelligent.

    Args:
        outcomes: All settled delegate outcomes, successes and failures

    Returns:
        Consensus with verdict, vote counts and percentages summing to 100
    """
    intelligent_votes = 0
    idiotic_votes = 0
    intelligent_weight = 0
    idiotic_weight = 0

    for outcome in outcomes:
        if outcome.failed:
            continue

        if outcome.vote == IDIOTIC:
            idiotic_votes += 1
            idiotic_weight += outcome.confidence or 0
        else:
            intelligent_votes += 1
            intelligent_weight += outcome.confidence or 0

    total_votes = intelligent_votes + idiotic_votes

    verdict = INTELLIGENT
    if idiotic_votes > intelligent_votes:
        verdict = IDIOTIC
    elif idiotic_votes == intelligent_votes and idiotic_weight > intelligent_weight:
        verdict = IDIOTIC

    intelligent_pct = (
        round_half_up(intelligent_votes / total_votes * 100) if total_votes else 50
    )

    return Consensus(
        verdict=verdict,
        intelligent_votes=intelligent_votes,
        idiotic_votes=idiotic_votes,
        total_votes=total_votes,
        intelligent_pct=intelligent_pct,
        idiotic_pct=100 - intelligent_pct,
    )
