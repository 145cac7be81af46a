"""
Text-generation gateway -- the only place the pipeline talks to the LLM.

Using the OpenAI SDK directly, same as the rest of the project. Every
caller gets raw text back and is responsible for parsing/validating it;
the gateway only deals with getting *a* response out of the service.

Transient failures (connection drops, timeouts, 429s, 5xx) are retried
with exponential backoff. Anything still failing after that comes out as
GatewayTransportError so stages can decide whether a fallback is allowed.
"""

import json
import logging
import re
from enum import Enum

import openai
from openai import OpenAI
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from config import (
    GATEWAY_MAX_ATTEMPTS,
    GATEWAY_TIMEOUT_SECONDS,
    LLM_MODEL,
    LLM_TEMPERATURE,
)
from errors import GatewayTransportError, PerDocumentSchemaError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class TaskType(str, Enum):
    METADATA_EXTRACTION = "metadata-extraction"
    CRITERIA_GENERATION = "criteria-generation"
    EVALUATION = "evaluation"
    CRITERIA_JUDGING = "criteria-judging"


# tasks whose answer is a single JSON object -- lets us switch on json mode.
# criteria generation answers with a bare array, which json mode won't allow.
_JSON_OBJECT_TASKS = {
    TaskType.METADATA_EXTRACTION,
    TaskType.EVALUATION,
    TaskType.CRITERIA_JUDGING,
}


class TextGenerationGateway:
    """Thin wrapper over chat completions with retry.

    The client is created lazily so importing the pipeline (or running the
    tests with a fake gateway) doesn't need an API key.
    """

    retry_wait = wait_random_exponential(multiplier=1, min=1, max=10)

    def __init__(self, client=None, model=LLM_MODEL, temperature=LLM_TEMPERATURE,
                 max_attempts=GATEWAY_MAX_ATTEMPTS):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_attempts = max_attempts

    @property
    def client(self):
        if self._client is None:
            self._client = OpenAI(timeout=GATEWAY_TIMEOUT_SECONDS)
        return self._client

    def generate(self, task: TaskType, system_prompt: str, user_prompt: str) -> str:
        """Send one request and return the raw response text.

        Raises GatewayTransportError once retries are used up, or straight
        away for non-transient API errors (bad key, bad request).
        """
        try:
            return self._complete_with_retry(task, system_prompt, user_prompt)
        except _TRANSIENT_ERRORS as e:
            raise GatewayTransportError(
                f"{task.value} request failed after {self.max_attempts} attempts: {e}"
            ) from e
        except openai.OpenAIError as e:
            raise GatewayTransportError(f"{task.value} request rejected: {e}") from e

    def _complete_with_retry(self, task, system_prompt, user_prompt):
        retrying = retry(
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._complete)(task, system_prompt, user_prompt)

    def _complete(self, task, system_prompt, user_prompt):
        kwargs = {}
        if task in _JSON_OBJECT_TASKS:
            kwargs["response_format"] = {"type": "json_object"}

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            **kwargs,
        )
        return response.choices[0].message.content or ""


def parse_json(text: str):
    """Decode a gateway response, tolerating a ```json fence around it.

    Raises PerDocumentSchemaError if the text isn't JSON at all.
    """
    cleaned = (text or "").strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise PerDocumentSchemaError(f"response is not valid JSON: {e}") from e
