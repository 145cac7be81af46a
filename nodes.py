"""
Node functions for the LangGraph screening pipeline.

Each node takes the shared state and returns the keys it wants to
update. Kept these as plain functions instead of classes -- easier to
test and reason about. The gateway-backed nodes take the gateway as an
extra argument; run.build_graph binds it with functools.partial.

Failure policy:
  - per-paper problems (bad JSON, wrong shape, gateway down) never leave
    the node -- the paper gets a conservative fallback record instead
  - anything else is a stage failure: the @stage wrapper turns it into an
    entry in `errors` and the graph routes straight to END
"""

import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from pydantic import ValidationError

from config import (
    ABSTRACT_SUMMARY_CHARS,
    BATCH_SIZE,
    CRITERIA_COUNT,
    FALLBACK_REASONING,
    MAX_WORKERS,
    NOT_SPECIFIED,
)
from errors import (
    CriteriaShapeError,
    GatewayTransportError,
    InputValidationError,
    PerDocumentSchemaError,
    ScreeningError,
)
from gateway import TaskType, parse_json
from schemas import (
    Criterion,
    CriterionEvaluation,
    Paper,
    PaperEvaluation,
    PaperMetadata,
)
from scoring import aggregate_statistics, rank_papers, select_top_papers
from state import PipelineStep

logger = logging.getLogger(__name__)

# node name, display name, what it does -- also served by describe_pipeline()
STAGES = [
    ("validate_input", "Input Processor", "Validate and process input papers"),
    ("extract_metadata", "Metadata Extractor", "Extract comprehensive metadata from papers"),
    ("generate_criteria", "Criteria Generator", "Generate 6 screening criteria based on metadata"),
    ("evaluate_papers", "Paper Evaluator", "Evaluate each paper against criteria (Yes/Maybe/No)"),
    ("generate_statistics", "Statistics Generator", "Generate statistics for criteria responses"),
    ("select_papers", "Top Papers Selector", "Select top 10 papers based on evaluation scores"),
]
_STAGE_NAMES = {node: name for node, name, _ in STAGES}

METADATA_SYSTEM_PROMPT = (
    "You are a research paper metadata extraction expert. Extract accurate "
    "metadata and return valid JSON only."
)
CRITERIA_SYSTEM_PROMPT = (
    "You are a systematic review expert. Generate comprehensive screening "
    "criteria that will effectively filter research papers for quality and "
    "relevance. Return valid JSON only."
)
EVALUATION_SYSTEM_PROMPT = (
    "You are a systematic review expert. Evaluate research papers objectively "
    "against screening criteria. Return only valid JSON."
)


def stage(node_name):
    """Wrap a node so any failure becomes a stage-tagged error entry.

    The graph's conditional edges check `errors` after every node, so a
    returned error is enough to stop the run.
    """
    title = _STAGE_NAMES[node_name]

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(state, *args, **kwargs):
            logger.info("%s: starting", title)
            try:
                update = fn(state, *args, **kwargs)
            except ScreeningError as e:
                logger.error("%s failed: %s", title, e)
                return {"errors": [f"{title} Error: {e}"], "failed_stage": node_name}
            except Exception as e:
                logger.exception("%s failed unexpectedly", title)
                return {"errors": [f"{title} Error: {e}"], "failed_stage": node_name}
            logger.info("%s: done (%s)", title, update["current_step"])
            return update

        return wrapper

    return decorator


def map_in_order(fn, items, max_workers=MAX_WORKERS, label="Processed"):
    """Run fn(index, item) over a bounded thread pool.

    Results land in a pre-sized list by index, so output order always
    matches input order no matter which call finishes first. If any call
    raises, pending work is cancelled and the error propagates.
    """
    results = [None] * len(items)
    if not items:
        return results

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(fn, i, item): i for i, item in enumerate(items)}
        try:
            for done, future in enumerate(as_completed(futures), start=1):
                results[futures[future]] = future.result()
                if done % 10 == 0:
                    logger.info("  %s %d/%d papers", label, done, len(items))
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
    return results


# --- Input ---

@stage("validate_input")
def validate_input_node(state):
    """Checks the batch size and that every paper has a title and abstract.

    Runs before anything talks to the gateway.
    """
    raw = state.get("raw_papers")
    if not isinstance(raw, list) or len(raw) != BATCH_SIZE:
        got = len(raw) if isinstance(raw, list) else type(raw).__name__
        raise InputValidationError(
            f"Expected exactly {BATCH_SIZE} research papers, got {got}"
        )

    papers = []
    for i, item in enumerate(raw, start=1):
        if isinstance(item, Paper):
            papers.append(item)
            continue
        fields = item if isinstance(item, dict) else {}
        missing = [
            key for key in ("title", "abstract")
            if not isinstance(fields.get(key), str) or not fields[key].strip()
        ]
        if missing:
            raise InputValidationError(
                f"Paper {i} missing required fields: {', '.join(missing)}"
            )
        papers.append(Paper.model_validate(fields))

    return {
        "input_papers": papers,
        "current_step": PipelineStep.INPUT_PROCESSED.value,
    }


# --- Metadata ---

def fallback_metadata(index, paper):
    """Degraded record built only from what we already know about the paper."""
    return PaperMetadata(
        paper_id=index + 1,
        original_index=index,
        title=paper.title,
        abstract_summary=paper.abstract[:ABSTRACT_SUMMARY_CHARS],
        fallback=True,
    )


def _metadata_prompt(paper):
    return (
        "Extract comprehensive metadata from this research paper. Return a "
        "JSON object with these keys:\n"
        '  "title", "authors" (list), "journal", "year", "keywords" (list),\n'
        '  "research_domain", "methodology", "sample_size", "study_type",\n'
        '  "main_findings", "limitations", "abstract_summary"\n\n'
        f"Title: {paper.title}\n"
        f"Abstract: {paper.abstract}\n\n"
        "Extract only factual information present in the paper. If something "
        f'isn\'t available, use "{NOT_SPECIFIED}".'
    )


def parse_metadata(text, index, paper):
    """Turns a gateway response into PaperMetadata or raises PerDocumentSchemaError."""
    data = parse_json(text)
    if not isinstance(data, dict):
        raise PerDocumentSchemaError("metadata response is not a JSON object")

    payload = {
        **data,
        "title": data.get("title") or paper.title,
        "paper_id": index + 1,
        "original_index": index,
        "fallback": False,
    }
    try:
        return PaperMetadata.model_validate(payload)
    except ValidationError as e:
        raise PerDocumentSchemaError(f"metadata failed validation: {e}") from e


def extract_paper_metadata(gateway, index, paper):
    try:
        text = gateway.generate(
            TaskType.METADATA_EXTRACTION, METADATA_SYSTEM_PROMPT, _metadata_prompt(paper)
        )
        return parse_metadata(text, index, paper)
    except (PerDocumentSchemaError, GatewayTransportError) as e:
        logger.warning("Paper %d: metadata extraction failed, using fallback (%s)",
                       index + 1, e)
        return fallback_metadata(index, paper)


@stage("extract_metadata")
def extract_metadata_node(state, gateway, max_workers=MAX_WORKERS):
    papers = state["input_papers"]
    metadata = map_in_order(
        functools.partial(extract_paper_metadata, gateway),
        papers,
        max_workers=max_workers,
        label="Extracted metadata for",
    )
    fallbacks = sum(m.fallback for m in metadata)
    if fallbacks:
        logger.warning("%d/%d papers fell back to degraded metadata", fallbacks, len(papers))
    return {
        "extracted_metadata": metadata,
        "current_step": PipelineStep.METADATA_EXTRACTED.value,
    }


# --- Criteria ---

def _criteria_prompt(metadata):
    summary = [
        {
            "title": m.title,
            "research_domain": m.research_domain,
            "methodology": m.methodology,
            "study_type": m.study_type,
            "keywords": m.keywords,
        }
        for m in metadata
    ]
    return (
        f"Based on the metadata of {len(metadata)} research papers, generate "
        f"{CRITERIA_COUNT} screening criteria that would help identify the most "
        "relevant and high-quality papers for a systematic review.\n\n"
        f"Metadata summary:\n{json.dumps(summary, indent=2)}\n\n"
        "Each criterion must be answerable with Yes/Maybe/No, be specific, and "
        "cover a different aspect (methodology, relevance, quality, scope, ...).\n\n"
        f"Return a JSON array of exactly {CRITERIA_COUNT} objects, each with:\n"
        '  "id" (1-6), "criterion", "description", "evaluation_focus"'
    )


def parse_criteria(text):
    """Parses the criteria response. No fallback here -- raises CriteriaShapeError."""
    try:
        data = parse_json(text)
    except PerDocumentSchemaError as e:
        raise CriteriaShapeError(f"Failed to generate exactly {CRITERIA_COUNT} criteria: {e}") from e

    # json-mode models sometimes wrap the array in an object
    if isinstance(data, dict) and isinstance(data.get("criteria"), list):
        data = data["criteria"]

    if not isinstance(data, list) or len(data) != CRITERIA_COUNT:
        got = len(data) if isinstance(data, list) else type(data).__name__
        raise CriteriaShapeError(
            f"Failed to generate exactly {CRITERIA_COUNT} criteria (got {got})"
        )

    try:
        criteria = [Criterion.model_validate(item) for item in data]
    except ValidationError as e:
        raise CriteriaShapeError(f"Criteria failed validation: {e}") from e

    expected_ids = list(range(1, CRITERIA_COUNT + 1))
    if sorted(c.id for c in criteria) != expected_ids:
        logger.warning("Criteria ids %s are not 1..%d, renumbering by position",
                       [c.id for c in criteria], CRITERIA_COUNT)
        criteria = [c.model_copy(update={"id": i}) for i, c in enumerate(criteria, start=1)]

    return sorted(criteria, key=lambda c: c.id)


@stage("generate_criteria")
def generate_criteria_node(state, gateway):
    """One request over every paper's metadata; must come back with 6 criteria."""
    text = gateway.generate(
        TaskType.CRITERIA_GENERATION,
        CRITERIA_SYSTEM_PROMPT,
        _criteria_prompt(state["extracted_metadata"]),
    )
    return {
        "generated_criteria": parse_criteria(text),
        "current_step": PipelineStep.CRITERIA_GENERATED.value,
    }


# --- Evaluation ---

def fallback_evaluation(index, paper, criteria):
    """Everything Maybe -- we don't know, so neither reward nor punish."""
    return PaperEvaluation(
        paper_id=index + 1,
        title=paper.title,
        evaluations=[
            CriterionEvaluation(criterion_id=c.id, response="Maybe",
                                reasoning=FALLBACK_REASONING)
            for c in criteria
        ],
        fallback=True,
    )


def _evaluation_prompt(index, paper, criteria):
    criteria_text = "\n".join(
        f"Criterion {c.id}: {c.criterion} - {c.description}" for c in criteria
    )
    return (
        f"Evaluate this research paper against the following {len(criteria)} "
        'criteria. For each one answer exactly "Yes", "Maybe", or "No".\n\n'
        f"CRITERIA:\n{criteria_text}\n\n"
        f"PAPER:\nTitle: {paper.title}\nAbstract: {paper.abstract}\n\n"
        '- "Yes": the paper clearly meets the criterion\n'
        '- "Maybe": partially meets it, or the evidence is unclear\n'
        '- "No": does not meet it\n\n'
        "Return ONLY a JSON object:\n"
        f'{{"paper_id": {index + 1}, "title": "...", "evaluations": ['
        '{"criterion_id": 1, "response": "Yes/Maybe/No", "reasoning": "brief explanation"}, '
        f"... one entry per criterion, {len(criteria)} in total]}}"
    )


def parse_evaluation(text, index, paper, criteria):
    """Validates one paper's evaluation response.

    Needs one entry per criterion id. Unknown response values are coerced
    to "No" by CriterionEvaluation rather than rejected.
    """
    data = parse_json(text)
    if not isinstance(data, dict):
        raise PerDocumentSchemaError("evaluation response is not a JSON object")

    entries = data.get("evaluations")
    if not isinstance(entries, list) or len(entries) != len(criteria):
        raise PerDocumentSchemaError("Invalid evaluation structure")

    try:
        evaluations = [CriterionEvaluation.model_validate(e) for e in entries]
    except ValidationError as e:
        raise PerDocumentSchemaError(f"evaluation failed validation: {e}") from e

    if sorted(ev.criterion_id for ev in evaluations) != sorted(c.id for c in criteria):
        raise PerDocumentSchemaError("evaluations don't cover each criterion exactly once")

    return PaperEvaluation(
        paper_id=index + 1,
        title=paper.title,
        evaluations=sorted(evaluations, key=lambda ev: ev.criterion_id),
    )


def evaluate_paper(gateway, criteria, index, paper):
    try:
        text = gateway.generate(
            TaskType.EVALUATION,
            EVALUATION_SYSTEM_PROMPT,
            _evaluation_prompt(index, paper, criteria),
        )
        return parse_evaluation(text, index, paper, criteria)
    except (PerDocumentSchemaError, GatewayTransportError) as e:
        logger.warning("Paper %d: evaluation failed, marking all Maybe (%s)", index + 1, e)
        return fallback_evaluation(index, paper, criteria)


@stage("evaluate_papers")
def evaluate_papers_node(state, gateway, max_workers=MAX_WORKERS):
    results = map_in_order(
        functools.partial(evaluate_paper, gateway, state["generated_criteria"]),
        state["input_papers"],
        max_workers=max_workers,
        label="Evaluated",
    )
    return {
        "evaluation_results": results,
        "current_step": PipelineStep.PAPERS_EVALUATED.value,
    }


# --- Statistics & selection ---

@stage("generate_statistics")
def generate_statistics_node(state):
    stats = aggregate_statistics(state["generated_criteria"], state["evaluation_results"])
    return {
        "criteria_stats": stats,
        "current_step": PipelineStep.STATISTICS_GENERATED.value,
    }


@stage("select_papers")
def select_papers_node(state):
    ranked = rank_papers(state["evaluation_results"])
    selected = select_top_papers(
        ranked, state["input_papers"], state["extracted_metadata"]
    )
    logger.info("Selected top %d papers (%d eligible overall)",
                len(selected), sum(p.is_eligible for p in ranked))
    return {
        "final_selected_papers": selected,
        "current_step": PipelineStep.TOP_PAPERS_SELECTED.value,
    }
