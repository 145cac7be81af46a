"""Tests for statistics aggregation and the tiered eligibility ranking."""

import itertools

import pytest

from conftest import make_papers
from schemas import (
    Criterion,
    CriterionEvaluation,
    Paper,
    PaperEvaluation,
    PaperMetadata,
)
from scoring import (
    aggregate_statistics,
    eligibility_score,
    eligibility_tier,
    rank_papers,
    score_paper,
    select_top_papers,
)


def _evaluation(paper_id, responses):
    return PaperEvaluation(
        paper_id=paper_id,
        title=f"Paper {paper_id}",
        evaluations=[
            CriterionEvaluation(criterion_id=i, response=r, reasoning=f"r{i}")
            for i, r in enumerate(responses, start=1)
        ],
    )


def _tally(yes, maybe):
    return ["Yes"] * yes + ["Maybe"] * maybe + ["No"] * (6 - yes - maybe)


def _all_combinations():
    return [(y, m) for y in range(7) for m in range(7 - y)]


def _inputs(count):
    papers = [Paper(**p) for p in make_papers(count)]
    metadata = [
        PaperMetadata(paper_id=i + 1, original_index=i, title=p.title)
        for i, p in enumerate(papers)
    ]
    return papers, metadata


class TestEligibilityTier:

    @pytest.mark.parametrize("yes,maybe,base,eligible", [
        (6, 0, 1000, True),
        (5, 1, 900, True),
        (4, 2, 800, True),
        (5, 0, 700, True),   # 5 yes + 1 no still clears yes+maybe >= 5
        (4, 1, 700, True),
        (3, 2, 700, True),
        (3, 3, 700, True),
        (3, 1, 0, False),
        (2, 4, 0, False),
        (0, 6, 0, False),
        (0, 0, 0, False),
    ])
    def test_tier_table(self, yes, maybe, base, eligible):
        assert eligibility_tier(yes, maybe) == (base, eligible)

    def test_bonus_applies_to_ineligible(self):
        assert eligibility_score(2, 4) == 20 + 20
        assert eligibility_score(0, 0) == 0

    def test_all_yes_scores_1060(self):
        assert eligibility_score(6, 0) == 1060

    def test_tier_ordering_holds_for_every_combination(self):
        all_yes = eligibility_score(6, 0)
        five_one = eligibility_score(5, 1)
        four_two = eligibility_score(4, 2)
        assert all_yes > five_one > four_two

        others = [(y, m) for y, m in _all_combinations()
                  if (y, m) not in {(6, 0), (5, 1), (4, 2)}]
        for y, m in others:
            assert four_two > eligibility_score(y, m), (y, m)

    def test_every_eligible_beats_every_ineligible(self):
        eligible, ineligible = [], []
        for y, m in _all_combinations():
            (eligible if eligibility_tier(y, m)[1] else ineligible).append(
                eligibility_score(y, m))
        assert min(eligible) > max(ineligible)


class TestRanking:

    def test_score_paper_counts(self):
        scored = score_paper(_evaluation(3, ["Yes", "Yes", "Maybe", "No", "Yes", "Maybe"]))
        assert (scored.yes_count, scored.maybe_count, scored.no_count) == (3, 2, 1)
        assert scored.eligibility_score == 700 + 30 + 10
        assert scored.is_eligible
        assert scored.original_index == 2

    def test_ties_keep_input_order(self):
        results = [_evaluation(i, _tally(6, 0)) for i in range(1, 51)]
        ranked = rank_papers(results)
        assert [p.paper_id for p in ranked] == list(range(1, 51))
        assert {p.eligibility_score for p in ranked} == {1060}

    def test_sorted_descending(self):
        results = [
            _evaluation(1, _tally(1, 1)),
            _evaluation(2, _tally(6, 0)),
            _evaluation(3, _tally(4, 2)),
            _evaluation(4, _tally(5, 1)),
        ]
        assert [p.paper_id for p in rank_papers(results)] == [2, 4, 3, 1]


class TestSelection:

    def test_takes_top_ten_eligible(self):
        papers, metadata = _inputs(50)
        results = [_evaluation(i, _tally(6 if i > 20 else 0, 0)) for i in range(1, 51)]
        selected = select_top_papers(rank_papers(results), papers, metadata)

        assert [p.paper_id for p in selected] == list(range(21, 31))
        assert [p.rank for p in selected] == list(range(1, 11))
        assert all(p.is_eligible for p in selected)

    def test_tops_up_with_best_ineligible(self):
        papers, metadata = _inputs(50)
        results = [_evaluation(i, _tally(0, 0)) for i in range(1, 51)]
        results[9] = _evaluation(10, _tally(5, 1))
        results[29] = _evaluation(30, _tally(6, 0))
        results[39] = _evaluation(40, _tally(2, 3))   # best ineligible
        selected = select_top_papers(rank_papers(results), papers, metadata)

        assert len(selected) == 10
        assert [p.paper_id for p in selected[:3]] == [30, 10, 40]
        assert [p.is_eligible for p in selected[:3]] == [True, True, False]
        # the rest are all-No ties, in input order
        assert [p.paper_id for p in selected[3:]] == [1, 2, 3, 4, 5, 6, 7]

    def test_small_pool_returns_everything(self):
        papers, metadata = _inputs(4)
        results = [_evaluation(i, _tally(i, 0)) for i in range(1, 5)]
        selected = select_top_papers(rank_papers(results), papers, metadata)
        assert [p.paper_id for p in selected] == [4, 3, 2, 1]

    def test_joins_paper_and_metadata_by_index(self):
        papers, metadata = _inputs(50)
        results = [_evaluation(i, _tally(6 if i == 17 else 0, 0)) for i in range(1, 51)]
        top = select_top_papers(rank_papers(results), papers, metadata)[0]

        assert top.paper_id == 17
        assert top.original_paper is papers[16]
        assert top.metadata.paper_id == 17
        assert top.metadata.original_index == 16


class TestStatistics:

    def _criteria(self):
        return [Criterion(id=i, criterion=f"C{i}", description=f"D{i}") for i in range(1, 7)]

    def test_counts_sum_to_paper_count(self):
        combos = itertools.cycle(_all_combinations())
        results = [_evaluation(i, _tally(*next(combos))) for i in range(1, 51)]
        stats = aggregate_statistics(self._criteria(), results)

        assert set(stats) == {1, 2, 3, 4, 5, 6}
        for stat in stats.values():
            assert stat.yes_count + stat.maybe_count + stat.no_count == 50
            assert len(stat.yes_papers) == stat.yes_count
            assert len(stat.maybe_papers) == stat.maybe_count
            assert len(stat.no_papers) == stat.no_count

    def test_references_point_back_to_papers(self):
        results = [
            _evaluation(1, ["Yes", "No", "No", "No", "No", "No"]),
            _evaluation(2, ["Maybe", "No", "No", "No", "No", "No"]),
        ]
        stats = aggregate_statistics(self._criteria(), results)

        assert stats[1].criterion == "C1"
        assert stats[1].description == "D1"
        assert [(r.paper_id, r.title, r.reasoning) for r in stats[1].yes_papers] == [
            (1, "Paper 1", "r1")
        ]
        assert [r.paper_id for r in stats[1].maybe_papers] == [2]
        assert stats[2].no_count == 2

    def test_unknown_criterion_ids_are_ignored(self):
        stray = PaperEvaluation(
            paper_id=1, title="Paper 1",
            evaluations=[CriterionEvaluation(criterion_id=99, response="Yes")],
        )
        stats = aggregate_statistics(self._criteria(), [stray])
        assert all(s.yes_count == 0 for s in stats.values())
