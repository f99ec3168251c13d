"""
Shared chat-completions helper for quiz generation.

Talks to any OpenAI-compatible endpoint (OpenAI itself, or Gemini through
its OpenAI-compatible base URL).

Model: gemini-2.0-flash  (override with LLM_MODEL env var)
"""

import json
import logging
import os
import re
from typing import Optional

from openai import OpenAI, OpenAIError

from academypro.errors import UpstreamError

log = logging.getLogger(__name__)

# ── Model config ───────────────────────────────────────────────────────────────
LLM_MODEL = os.getenv("LLM_MODEL", "gemini-2.0-flash")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/")

# Lazy singleton
_client: Optional[OpenAI] = None


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        api_key = os.getenv("LLM_API_KEY")
        if not api_key:
            raise UpstreamError("LLM_API_KEY is not set. Add it to your .env file.")
        _client = OpenAI(api_key=api_key, base_url=LLM_BASE_URL)
    return _client


def call_llm(
    prompt: str,
    system: str = "Return only valid JSON.",
    temperature: float = 0.4,
    max_tokens: int = 2048,
) -> str:
    """
    Call Chat Completions and return the assistant message text.

    Args:
        prompt:      User-turn message
        system:      System prompt
        temperature: Sampling temperature
        max_tokens:  Max response tokens
    """
    client = _get_client()
    try:
        response = client.chat.completions.create(
            model=LLM_MODEL,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
    except OpenAIError as e:
        log.error("LLM call failed: %s", e)
        raise UpstreamError("Quiz generation service failed")
    return response.choices[0].message.content or ""


# ─── JSON extraction ───────────────────────────────────────────────────────────

def extract_json_obj(raw: str) -> dict:
    """Strip code fences and parse the outermost JSON object."""
    raw = (raw or "").strip()
    raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    raw = re.sub(r"\s*```$", "", raw, flags=re.MULTILINE)
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError(f"No JSON object found: {raw[:200]}")
    return json.loads(raw[start:end])
