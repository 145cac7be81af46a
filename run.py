"""
Main entry point for the LangGraph paper screening pipeline.

Takes a batch of 50 title/abstract pairs, runs them through the 6-node
graph (validate -> metadata -> criteria -> evaluate -> statistics ->
select), and saves the response envelope as JSON.

Usage:
  python run.py --input papers.json    # screen a real batch
  python run.py --sample               # screen a synthetic batch
  python run.py --info                 # print the stage layout
"""

import argparse
import functools
import json
import logging
import random
from pathlib import Path

from langgraph.graph import StateGraph, START, END

from config import BATCH_SIZE, LLM_MODEL, MAX_WORKERS, OUTPUT_DIR
from gateway import TextGenerationGateway
from nodes import (
    STAGES,
    validate_input_node,
    extract_metadata_node,
    generate_criteria_node,
    evaluate_papers_node,
    generate_statistics_node,
    select_papers_node,
)
from state import WorkflowState, initial_state

logger = logging.getLogger(__name__)

REQUIRED_FORMAT = {
    "papers": [
        {"title": "Paper title", "abstract": "Paper abstract"},
    ]
}


def should_continue(state):
    """Any recorded error ends the run -- no stage after a failure executes."""
    return "error" if state.get("errors") else "continue"


def build_graph(gateway=None, max_workers=MAX_WORKERS):
    """Sets up the pipeline as a straight line of six nodes.

    After every node there's a conditional edge to END, taken as soon as
    a node reports an error. There are no retry or skip edges.
    """
    gateway = gateway or TextGenerationGateway()
    graph = StateGraph(WorkflowState)

    graph.add_node("validate_input", validate_input_node)
    graph.add_node("extract_metadata", functools.partial(
        extract_metadata_node, gateway=gateway, max_workers=max_workers))
    graph.add_node("generate_criteria", functools.partial(
        generate_criteria_node, gateway=gateway))
    graph.add_node("evaluate_papers", functools.partial(
        evaluate_papers_node, gateway=gateway, max_workers=max_workers))
    graph.add_node("generate_statistics", generate_statistics_node)
    graph.add_node("select_papers", select_papers_node)

    order = [node for node, _, _ in STAGES]
    graph.add_edge(START, order[0])
    for source, target in zip(order, order[1:] + [END]):
        graph.add_conditional_edges(
            source,
            should_continue,
            {"continue": target, "error": END},
        )

    return graph.compile()


def build_response(final_state):
    """Turns the final graph state into the response envelope."""
    errors = list(final_state.get("errors") or [])

    if errors:
        response = {
            "success": False,
            "workflow_steps": final_state.get("current_step"),
            "failed_stage": final_state.get("failed_stage"),
            "error": errors[-1],
            "errors": errors,
        }
        if final_state.get("failed_stage") == "validate_input":
            response["required_format"] = REQUIRED_FORMAT
        return response

    selected = final_state["final_selected_papers"]
    return {
        "success": True,
        "workflow_steps": final_state["current_step"],
        "input_papers_count": len(final_state["input_papers"]),
        "generated_criteria": [
            c.model_dump(mode="json") for c in final_state["generated_criteria"]
        ],
        "criteria_statistics": {
            criterion_id: stat.model_dump(mode="json")
            for criterion_id, stat in final_state["criteria_stats"].items()
        },
        "selected_papers_count": len(selected),
        "selected_papers": [
            {
                "rank": paper.rank,
                "paper_id": paper.paper_id,
                "title": paper.title,
                "eligibility_score": paper.eligibility_score,
                "criteria_results": {
                    "yes_count": paper.yes_count,
                    "maybe_count": paper.maybe_count,
                    "no_count": paper.no_count,
                },
                "detailed_evaluations": [
                    ev.model_dump(mode="json") for ev in paper.evaluations
                ],
                "metadata": paper.metadata.model_dump(mode="json"),
            }
            for paper in selected
        ],
        "errors": errors,
    }


def run_pipeline(papers, gateway=None, max_workers=MAX_WORKERS):
    """Runs the graph and returns the raw final state."""
    app = build_graph(gateway, max_workers=max_workers)
    return app.invoke(initial_state(papers))


def screen_papers(papers, gateway=None, max_workers=MAX_WORKERS):
    """Runs the full pipeline on a batch and returns the response envelope."""
    logger.info("Starting research paper screening workflow")
    final_state = run_pipeline(papers, gateway, max_workers=max_workers)
    response = build_response(final_state)
    if response["success"]:
        logger.info("Workflow completed: selected %d papers", response["selected_papers_count"])
    else:
        logger.error("Workflow failed: %s", response["error"])
    return response


def describe_pipeline():
    """Static description of the stages -- nothing is run."""
    return {
        "service": "Research Paper Screening Agentic Workflow",
        "agents": [
            {"id": i, "name": name, "node": node, "function": function}
            for i, (node, name, function) in enumerate(STAGES, start=1)
        ],
        "model": LLM_MODEL,
        "framework": "LangGraph + OpenAI",
    }


def generate_sample_papers(count=BATCH_SIZE, seed=None):
    """Synthetic batch for trying the pipeline without real input."""
    rng = random.Random(seed)
    return [
        {
            "title": f"Research Paper {i}: Impact of AI on Healthcare Systems",
            "abstract": (
                "This study examines the implementation of artificial intelligence "
                "in healthcare systems. The research focuses on efficiency "
                "improvements, cost reduction, and patient outcome enhancement. We "
                "conducted a comprehensive analysis of "
                f"{rng.randint(100, 1099)} healthcare facilities over a "
                f"{rng.randint(1, 3)}-year period."
            ),
        }
        for i in range(1, count + 1)
    ]


def load_papers(path):
    """Reads a batch from JSON -- either a bare list or {"papers": [...]}."""
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        return data.get("papers")
    return data


def print_summary(response):
    if not response["success"]:
        print(f"\nScreening failed at {response['failed_stage']}: {response['error']}")
        if "required_format" in response:
            print("Expected input shape:")
            print(json.dumps(response["required_format"], indent=2))
        return

    print("\n" + "=" * 60)
    print("GENERATED CRITERIA")
    print("=" * 60)
    stats = response["criteria_statistics"]
    for c in response["generated_criteria"]:
        s = stats[c["id"]]
        print(f"  {c['id']}. {c['criterion']}")
        print(f"     Yes {s['yes_count']} / Maybe {s['maybe_count']} / No {s['no_count']}")

    print("\n" + "=" * 60)
    print(f"TOP {response['selected_papers_count']} PAPERS")
    print("=" * 60)
    for p in response["selected_papers"]:
        r = p["criteria_results"]
        print(f"  #{p['rank']:>2}  [{p['eligibility_score']:>4}]  "
              f"Y{r['yes_count']} M{r['maybe_count']} N{r['no_count']}  {p['title']}")


def main():
    parser = argparse.ArgumentParser(description="Screen a batch of research papers")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", type=Path, help="JSON file with 50 papers")
    source.add_argument("--sample", action="store_true", help="use a synthetic batch")
    source.add_argument("--info", action="store_true", help="describe the pipeline and exit")
    parser.add_argument("--workers", type=int, default=MAX_WORKERS)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--output", type=Path, default=OUTPUT_DIR / "screening_results.json")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.info:
        print(json.dumps(describe_pipeline(), indent=2))
        return

    if args.sample:
        papers = generate_sample_papers(seed=args.seed)
    else:
        if not args.input.exists():
            print(f"Input file not found: {args.input}")
            raise SystemExit(1)
        papers = load_papers(args.input)

    print(f"Screening {len(papers) if isinstance(papers, list) else 0} paper(s)\n")
    response = screen_papers(papers, max_workers=args.workers)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(response, indent=2))
    print_summary(response)
    print(f"\nFull results saved to {args.output}")

    if not response["success"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
