"""
Audit framework for saved screening results.

Runs up to four checks against a response envelope written by run.py:
  1. Structure  -- 6 criteria, statistic totals add up, ranks are 1..N (no LLM)
  2. Scoring    -- recompute every selected paper's score from its evaluations (no LLM)
  3. Fallbacks  -- how many selected-paper judgments were fallback values (no LLM)
  4. Criteria   -- is the criteria set distinct and answerable? (LLM-as-judge, 1-5, --judge)

Usage:
    python -m evaluation.evaluate
    python -m evaluation.evaluate --results output/screening_results.json --judge
"""

import argparse
import json
from pathlib import Path

from config import CRITERIA_COUNT, FALLBACK_REASONING, OUTPUT_DIR, SELECTION_SIZE
from gateway import TaskType, TextGenerationGateway, parse_json
from scoring import eligibility_score

JUDGE_SYSTEM_PROMPT = (
    "You are auditing screening criteria written for a systematic review. "
    "Return valid JSON only."
)


def evaluate_structure(results: dict) -> dict:
    """Checks the envelope's shape invariants.
    No LLM needed -- just counting.
    """
    problems = []
    input_count = results.get("input_papers_count", 0)

    criteria = results.get("generated_criteria", [])
    if len(criteria) != CRITERIA_COUNT:
        problems.append(f"expected {CRITERIA_COUNT} criteria, found {len(criteria)}")

    for criterion_id, stat in results.get("criteria_statistics", {}).items():
        total = stat["yes_count"] + stat["maybe_count"] + stat["no_count"]
        if total != input_count:
            problems.append(
                f"criterion {criterion_id}: counts sum to {total}, expected {input_count}"
            )

    selected = results.get("selected_papers", [])
    ranks = [p["rank"] for p in selected]
    if ranks != list(range(1, len(selected) + 1)):
        problems.append(f"ranks are not sequential: {ranks}")
    if len(selected) != min(SELECTION_SIZE, input_count):
        problems.append(f"selected {len(selected)} papers, expected {min(SELECTION_SIZE, input_count)}")

    # criteria count, one per statistic, ranks, selection size
    checks = 3 + len(results.get("criteria_statistics", {}))
    return {
        "metric": "structure",
        "score": round(max(checks - len(problems), 0) / checks, 2),
        "problems": problems,
    }


def evaluate_scoring(results: dict) -> dict:
    """Recomputes each selected paper's score and checks the ordering.
    Catches a hand-edited file or a drift between scorer versions.
    """
    selected = results.get("selected_papers", [])
    mismatches = []
    for paper in selected:
        responses = [ev["response"] for ev in paper["detailed_evaluations"]]
        expected = eligibility_score(responses.count("Yes"), responses.count("Maybe"))
        if expected != paper["eligibility_score"]:
            mismatches.append({
                "paper_id": paper["paper_id"],
                "reported": paper["eligibility_score"],
                "recomputed": expected,
            })

    scores = [p["eligibility_score"] for p in selected]
    out_of_order = sum(1 for a, b in zip(scores, scores[1:]) if b > a)

    score = 1.0 if not selected else (len(selected) - len(mismatches)) / len(selected)
    return {
        "metric": "scoring",
        "score": round(score, 2),
        "mismatches": mismatches,
        "out_of_order_pairs": out_of_order,
    }


def evaluate_fallback_rate(results: dict) -> dict:
    """Share of the selected papers' judgments that were fallback values.

    A high rate means the ranking was driven by gateway failures rather
    than actual evaluations.
    """
    judgments = [
        ev
        for paper in results.get("selected_papers", [])
        for ev in paper["detailed_evaluations"]
    ]
    fallbacks = sum(1 for ev in judgments if ev.get("reasoning") == FALLBACK_REASONING)
    rate = fallbacks / len(judgments) if judgments else 0.0
    return {
        "metric": "fallbacks",
        "score": round(1 - rate, 2),
        "fallback_judgments": fallbacks,
        "total_judgments": len(judgments),
    }


def evaluate_criteria_quality(gateway: TextGenerationGateway, criteria: list) -> dict:
    """Has the judge rate the criteria set 1-5 for distinctness and answerability."""
    prompt = (
        "Rate the following screening criteria on a scale of 1-5 for:\n"
        "- Each criterion covers a different aspect (no overlap)\n"
        "- Each can be answered Yes/Maybe/No from a title and abstract\n"
        "- Together they separate high-quality from low-quality papers\n\n"
        "Return a JSON object with:\n"
        '  "score": <float 1-5>,\n'
        '  "reasoning": "<brief explanation>",\n'
        '  "overlapping": [<ids of criteria that overlap, if any>]\n\n'
        f"Criteria:\n{json.dumps(criteria, indent=2)}"
    )

    result = parse_json(gateway.generate(TaskType.CRITERIA_JUDGING, JUDGE_SYSTEM_PROMPT, prompt))
    return {
        "metric": "criteria_quality",
        "score": round(result["score"] / 5, 2),
        "raw_score": result["score"],
        "reasoning": result.get("reasoning", ""),
        "overlapping": result.get("overlapping", []),
    }


def run_audit(results_path: Path, judge: bool = False, gateway=None):
    """Runs the checks, prints them and saves them as JSON next to the results."""
    results = json.loads(results_path.read_text())
    if not results.get("success"):
        print(f"Error: screening run failed ({results.get('error')}), nothing to audit.")
        raise SystemExit(1)

    print("Running audit...\n")

    structure = evaluate_structure(results)
    print(f"Structure: {structure['score']:.0%}")
    for problem in structure["problems"]:
        print(f"  - {problem}")

    scoring = evaluate_scoring(results)
    print(f"Scoring:   {scoring['score']:.0%}")
    for m in scoring["mismatches"]:
        print(f"  - paper {m['paper_id']}: reported {m['reported']}, "
              f"recomputed {m['recomputed']}")

    fallbacks = evaluate_fallback_rate(results)
    print(f"Fallbacks: {fallbacks['fallback_judgments']}/{fallbacks['total_judgments']} "
          "judgments")

    if judge:
        quality = evaluate_criteria_quality(
            gateway or TextGenerationGateway(), results["generated_criteria"]
        )
        print(f"Criteria:  {quality['score']:.0%} ({quality['raw_score']}/5)")
        print(f"  {quality['reasoning']}")
    else:
        quality = {"metric": "criteria_quality", "score": None, "note": "Judge not requested"}

    scores = [r["score"] for r in [structure, scoring, fallbacks, quality] if r["score"] is not None]
    overall = sum(scores) / len(scores) if scores else 0
    print(f"\nOverall:   {overall:.0%}")

    audit = {
        "structure": structure,
        "scoring": scoring,
        "fallbacks": fallbacks,
        "criteria_quality": quality,
        "overall_score": round(overall, 2),
    }
    audit_path = results_path.parent / "audit_results.json"
    audit_path.write_text(json.dumps(audit, indent=2))
    print(f"\nDetailed results saved to {audit_path}")
    return audit


def main():
    parser = argparse.ArgumentParser(description="Audit a saved screening result")
    parser.add_argument("--results", type=Path, default=OUTPUT_DIR / "screening_results.json")
    parser.add_argument("--judge", action="store_true", help="also rate the criteria with the LLM")
    args = parser.parse_args()

    if not args.results.exists():
        print(f"Results not found at {args.results}")
        print("Run the pipeline first: python run.py --sample")
        raise SystemExit(1)

    run_audit(args.results, judge=args.judge)


if __name__ == "__main__":
    main()
