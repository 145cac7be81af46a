"""Shared fixtures for the screening pipeline tests.

FakeGateway stands in for the OpenAI-backed gateway. Responses are
scripted per task type, either as a fixed string or as a function of
the paper id pulled out of the prompt, so tests can make individual
papers misbehave.
"""

import json
import re
import threading

import pytest

from gateway import TaskType

_TITLE_RE = re.compile(r"^Title: (.*)$", re.MULTILINE)
_PAPER_ID_RE = re.compile(r'"paper_id": (\d+)')


def make_papers(count=50):
    return [
        {"title": f"Paper {i}", "abstract": f"Abstract for paper {i}. " * 20}
        for i in range(1, count + 1)
    ]


def make_criteria(count=6):
    return [
        {
            "id": i,
            "criterion": f"Criterion {i}",
            "description": f"Does the paper satisfy aspect {i}?",
            "evaluation_focus": f"aspect {i}",
        }
        for i in range(1, count + 1)
    ]


def metadata_json(title):
    return json.dumps({
        "title": title,
        "authors": ["A. Author", "B. Author"],
        "journal": "Journal of Tests",
        "year": 2024,
        "keywords": ["testing"],
        "research_domain": "Software",
        "methodology": "Experimental",
        "sample_size": 120,
        "study_type": "experimental",
        "main_findings": "It works.",
        "limitations": "Synthetic data.",
        "abstract_summary": "A short summary.",
    })


def evaluation_json(paper_id, responses):
    return json.dumps({
        "paper_id": paper_id,
        "title": f"Paper {paper_id}",
        "evaluations": [
            {"criterion_id": i, "response": r, "reasoning": f"reason {i}"}
            for i, r in enumerate(responses, start=1)
        ],
    })


class FakeGateway:
    """Scripted gateway. Thread-safe call log so tests can assert on calls."""

    def __init__(self, metadata=None, criteria=None, evaluation=None):
        self.metadata = metadata or (lambda title: metadata_json(title))
        self.criteria = criteria if criteria is not None else json.dumps(make_criteria())
        self.evaluation = evaluation or (lambda pid: evaluation_json(pid, ["Yes"] * 6))
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, task, system_prompt, user_prompt):
        with self._lock:
            self.calls.append(task)

        if task == TaskType.METADATA_EXTRACTION:
            title = _TITLE_RE.search(user_prompt).group(1)
            return self._answer(self.metadata, title)
        if task == TaskType.CRITERIA_GENERATION:
            return self._answer(self.criteria, None)
        if task == TaskType.EVALUATION:
            pid = int(_PAPER_ID_RE.search(user_prompt).group(1))
            return self._answer(self.evaluation, pid)
        raise AssertionError(f"unexpected task {task}")

    @staticmethod
    def _answer(script, key):
        result = script(key) if callable(script) else script
        if isinstance(result, Exception):
            raise result
        return result

    def count(self, task):
        return sum(1 for t in self.calls if t == task)


@pytest.fixture
def papers():
    return make_papers()


@pytest.fixture
def gateway():
    return FakeGateway()
