"""
Shared state definition for the screening pipeline.

Every node in the graph reads from and writes to this state dict.
TypedDict because that's what LangGraph expects -- each node returns
only the keys it produced and LangGraph merges them into the next
snapshot, so no node ever edits what an earlier node wrote.

`errors` has an add reducer so failures append instead of overwrite.
"""

import operator
from enum import Enum
from typing import Annotated, Any, TypedDict

from schemas import (
    Criterion,
    CriterionStatistic,
    Paper,
    PaperEvaluation,
    PaperMetadata,
    SelectedPaper,
)


class PipelineStep(str, Enum):
    CREATED = "Created"
    INPUT_PROCESSED = "Input Processed"
    METADATA_EXTRACTED = "Metadata Extracted"
    CRITERIA_GENERATED = "Criteria Generated"
    PAPERS_EVALUATED = "Papers Evaluated"
    STATISTICS_GENERATED = "Statistics Generated"
    TOP_PAPERS_SELECTED = "Top 10 Selected"


class WorkflowState(TypedDict, total=False):
    raw_papers: list[Any]                           # whatever the caller sent
    input_papers: list[Paper]                       # validated by validate_input
    extracted_metadata: list[PaperMetadata]         # one per paper, input order
    generated_criteria: list[Criterion]             # always exactly 6
    evaluation_results: list[PaperEvaluation]       # one per paper, input order
    criteria_stats: dict[int, CriterionStatistic]   # keyed by criterion id
    final_selected_papers: list[SelectedPaper]
    current_step: str
    failed_stage: str | None
    errors: Annotated[list[str], operator.add]


def initial_state(papers) -> WorkflowState:
    return {
        "raw_papers": papers,
        "input_papers": [],
        "extracted_metadata": [],
        "generated_criteria": [],
        "evaluation_results": [],
        "criteria_stats": {},
        "final_selected_papers": [],
        "current_step": PipelineStep.CREATED.value,
        "failed_stage": None,
        "errors": [],
    }
