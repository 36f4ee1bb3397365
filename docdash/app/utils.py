"""
Small utilities: prompt loading, token estimation, truncation and JSON-safe conversion.

Rationale:
- Token counts are estimated at a fixed 4 characters per token so no tokenizer
  dependency is needed; every component uses the same estimate.
- Convert pandas/numpy types to native Python types before values leave the process.
"""

import json
import math
import os
from string import Template

import numpy as np

# Approximate characters per token for budget estimates
CHARS_PER_TOKEN = 4

TRUNCATION_MARKER = "...[truncated]"

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PROMPTS_DIR = os.path.join(BASE_DIR, "prompts")


def estimate_tokens(text: str) -> int:
    """Estimated token count: ceil(len / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_with_marker(text: str, limit: int) -> str:
    """
    Cut text to `limit` characters, appending an explicit marker when cut.
    The marker tells the model it is looking at a partial document.
    """
    if len(text) <= limit:
        return text
    return f"{text[:limit]} {TRUNCATION_MARKER}"


def read_prompt(name: str) -> str:
    """Read a prompt text file from the prompts directory."""
    path = os.path.join(PROMPTS_DIR, name)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def render_prompt(name: str, **values) -> str:
    """
    Fill a prompt template. Templates use $placeholders so the JSON examples
    inside them need no brace escaping.
    """
    return Template(read_prompt(name)).substitute(**values)


def safe_json(obj):
    """
    Convert pandas/numpy types to Python native types.
    Rationale: ensure response is JSON serializable for API responses.
    """
    def convert(o):
        if isinstance(o, float):
            return o if math.isfinite(o) else None
        if isinstance(o, (int, str, bool)) or o is None:
            return o
        if isinstance(o, (np.integer, np.floating, np.bool_)):
            return convert(o.item())
        if isinstance(o, dict):
            return {str(k): convert(v) for k, v in o.items()}
        if isinstance(o, (list, tuple)):
            return [convert(x) for x in o]
        try:
            return json.loads(json.dumps(o))
        except (TypeError, ValueError):
            return str(o)
    return convert(obj)
