"""
Central config for the screening pipeline. Everything pulls from here so I
only need to change settings in one place.
"""

import os
from pathlib import Path

# --- Paths ---
BASE_DIR = Path(__file__).parent
OUTPUT_DIR = BASE_DIR / "output"

# --- LLM ---
# gpt-4o-mini is plenty for Yes/Maybe/No judgments and keeps a 100+ call run cheap
LLM_MODEL = os.getenv("SCREENING_LLM_MODEL", "gpt-4o-mini")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.3"))
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# --- Gateway resilience ---
GATEWAY_MAX_ATTEMPTS = int(os.getenv("GATEWAY_MAX_ATTEMPTS", "3"))
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "60"))

# --- Concurrency ---
# small pool so 50 papers don't trip the provider's rate limits
MAX_WORKERS = int(os.getenv("SCREENING_MAX_WORKERS", "5"))

# --- Screening shape ---
BATCH_SIZE = 50
CRITERIA_COUNT = 6
SELECTION_SIZE = 10

# --- Fallback values ---
NOT_SPECIFIED = "Not specified"
ABSTRACT_SUMMARY_CHARS = 200
FALLBACK_REASONING = "Evaluation failed, marked as Maybe"
