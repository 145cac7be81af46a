"""
Pydantic models for everything that flows through the screening pipeline.

The gateway returns free text that is *supposed* to be JSON in one of these
shapes. Validating through pydantic gives one place where a bad response
turns into an error the stages can catch and replace with a fallback.

Records are frozen -- a stage builds new ones rather than editing the
previous stage's output.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import NOT_SPECIFIED

Response = Literal["Yes", "Maybe", "No"]
VALID_RESPONSES = ("Yes", "Maybe", "No")


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Paper(_Record):
    """One input document: a title/abstract pair."""

    title: str = Field(min_length=1)
    abstract: str = Field(min_length=1)


class PaperMetadata(_Record):
    """Structured metadata pulled out of one paper.

    paper_id and original_index are assigned by the extractor, never taken
    from the model's response. `fallback` marks the degraded record used when
    extraction failed; it is left out of serialized output.
    """

    paper_id: int
    original_index: int
    title: str
    authors: list[str] = Field(default_factory=list)
    journal: str = NOT_SPECIFIED
    year: int | str = NOT_SPECIFIED
    keywords: list[str] = Field(default_factory=list)
    research_domain: str = NOT_SPECIFIED
    methodology: str = NOT_SPECIFIED
    sample_size: int | str = NOT_SPECIFIED
    study_type: str = NOT_SPECIFIED
    main_findings: str = NOT_SPECIFIED
    limitations: str = NOT_SPECIFIED
    abstract_summary: str = NOT_SPECIFIED
    fallback: bool = Field(default=False, exclude=True)

    @field_validator(
        "journal", "year", "research_domain", "methodology", "sample_size",
        "study_type", "main_findings", "limitations", "abstract_summary",
        mode="before",
    )
    @classmethod
    def _null_to_sentinel(cls, value):
        # models love to send null for "not in the abstract"
        return NOT_SPECIFIED if value is None else value

    @field_validator("authors", "keywords", mode="before")
    @classmethod
    def _to_list(cls, value):
        # a bare string is one entry, unless it is the "nothing here" sentinel
        if value is None:
            return []
        if isinstance(value, str):
            return [] if value.strip() in ("", NOT_SPECIFIED) else [value]
        return value


class Criterion(_Record):
    """A single Yes/Maybe/No screening question.

    A missing id defaults to 0, which the criteria parser renumbers.
    """

    id: int = 0
    criterion: str = Field(min_length=1)
    description: str = ""
    evaluation_focus: str = ""


class CriterionEvaluation(_Record):
    """One paper's judgment against one criterion."""

    criterion_id: int
    response: Response
    reasoning: str = ""

    @field_validator("response", mode="before")
    @classmethod
    def _coerce_unknown_to_no(cls, value):
        # anything we don't recognise counts against the paper
        return value if value in VALID_RESPONSES else "No"

    @field_validator("reasoning", mode="before")
    @classmethod
    def _null_reasoning(cls, value):
        return "" if value is None else value


class PaperEvaluation(_Record):
    """All six judgments for one paper."""

    paper_id: int
    title: str
    evaluations: list[CriterionEvaluation]
    fallback: bool = Field(default=False, exclude=True)


class PaperReference(_Record):
    """Back-reference from a criterion statistic to the paper that answered it."""

    paper_id: int
    title: str
    reasoning: str


class CriterionStatistic(_Record):
    criterion: str
    description: str
    yes_count: int = 0
    maybe_count: int = 0
    no_count: int = 0
    yes_papers: list[PaperReference] = Field(default_factory=list)
    maybe_papers: list[PaperReference] = Field(default_factory=list)
    no_papers: list[PaperReference] = Field(default_factory=list)


class ScoredPaper(_Record):
    paper_id: int
    title: str
    yes_count: int
    maybe_count: int
    no_count: int
    eligibility_score: int
    is_eligible: bool
    evaluations: list[CriterionEvaluation]
    original_index: int


class SelectedPaper(ScoredPaper):
    """A ranked pick, joined back to its input paper and metadata."""

    rank: int
    original_paper: Paper
    metadata: PaperMetadata
