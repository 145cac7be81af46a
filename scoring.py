"""
Pure functions for the last two stages: per-criterion statistics and the
tiered eligibility score used to pick the final papers.

No LLM calls and no state here, so these can be tested on their own.
"""

from config import SELECTION_SIZE
from schemas import (
    CriterionStatistic,
    PaperReference,
    ScoredPaper,
    SelectedPaper,
)

# (yes, maybe) -> base score; checked top to bottom, first match wins
TIER_ALL_YES = 1000
TIER_FIVE_YES_ONE_MAYBE = 900
TIER_FOUR_YES_TWO_MAYBE = 800
TIER_MOSTLY_POSITIVE = 700

YES_BONUS = 10
MAYBE_BONUS = 5


def aggregate_statistics(criteria, evaluation_results):
    """Tally Yes/Maybe/No per criterion, keeping a reference to each paper.

    Returns {criterion_id: CriterionStatistic}. Evaluations pointing at a
    criterion id that isn't in `criteria` are ignored.
    """
    buckets = {
        c.id: {"Yes": [], "Maybe": [], "No": []}
        for c in criteria
    }

    for paper_eval in evaluation_results:
        for ev in paper_eval.evaluations:
            bucket = buckets.get(ev.criterion_id)
            if bucket is None:
                continue
            bucket[ev.response].append(PaperReference(
                paper_id=paper_eval.paper_id,
                title=paper_eval.title,
                reasoning=ev.reasoning,
            ))

    stats = {}
    for c in criteria:
        bucket = buckets[c.id]
        stats[c.id] = CriterionStatistic(
            criterion=c.criterion,
            description=c.description,
            yes_count=len(bucket["Yes"]),
            maybe_count=len(bucket["Maybe"]),
            no_count=len(bucket["No"]),
            yes_papers=bucket["Yes"],
            maybe_papers=bucket["Maybe"],
            no_papers=bucket["No"],
        )
    return stats


def eligibility_tier(yes_count: int, maybe_count: int) -> tuple[int, bool]:
    """Base score and eligibility for a yes/maybe tally out of 6."""
    if yes_count == 6:
        return TIER_ALL_YES, True
    if yes_count == 5 and maybe_count == 1:
        return TIER_FIVE_YES_ONE_MAYBE, True
    if yes_count == 4 and maybe_count == 2:
        return TIER_FOUR_YES_TWO_MAYBE, True
    if yes_count >= 3 and yes_count + maybe_count >= 5:
        return TIER_MOSTLY_POSITIVE, True
    return 0, False


def eligibility_score(yes_count: int, maybe_count: int) -> int:
    base, _ = eligibility_tier(yes_count, maybe_count)
    # bonus applies to ineligible papers too, so they still rank among themselves
    return base + YES_BONUS * yes_count + MAYBE_BONUS * maybe_count


def score_paper(paper_eval) -> ScoredPaper:
    responses = [ev.response for ev in paper_eval.evaluations]
    yes_count = responses.count("Yes")
    maybe_count = responses.count("Maybe")
    no_count = responses.count("No")
    _, eligible = eligibility_tier(yes_count, maybe_count)

    return ScoredPaper(
        paper_id=paper_eval.paper_id,
        title=paper_eval.title,
        yes_count=yes_count,
        maybe_count=maybe_count,
        no_count=no_count,
        eligibility_score=eligibility_score(yes_count, maybe_count),
        is_eligible=eligible,
        evaluations=paper_eval.evaluations,
        original_index=paper_eval.paper_id - 1,
    )


def rank_papers(evaluation_results) -> list[ScoredPaper]:
    """Score every paper and sort best first.

    sorted() is stable, so papers with the same score stay in input order.
    """
    scored = [score_paper(pe) for pe in evaluation_results]
    return sorted(scored, key=lambda p: p.eligibility_score, reverse=True)


def select_top_papers(ranked, papers, metadata, limit=SELECTION_SIZE):
    """Pick the final papers from an already-ranked list.

    Eligible papers always come first. If there aren't `limit` of them,
    the list is topped up with the best-scoring ineligible ones. Each pick
    is joined back to its input paper and metadata.
    """
    eligible = [p for p in ranked if p.is_eligible]
    if len(eligible) >= limit:
        picked = eligible[:limit]
    else:
        ineligible = [p for p in ranked if not p.is_eligible]
        picked = eligible + ineligible[:limit - len(eligible)]

    return [
        SelectedPaper(
            **p.model_dump(),
            rank=rank,
            original_paper=papers[p.original_index],
            metadata=metadata[p.original_index],
        )
        for rank, p in enumerate(picked, start=1)
    ]
