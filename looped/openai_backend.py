from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from .errors import CollaboratorError


def _extract_response_text(response: Any) -> str:
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text

    out = []
    output = getattr(response, "output", None) or []
    for item in output:
        content = getattr(item, "content", None) or []
        for part in content:
            if getattr(part, "type", "") == "output_text":
                value = getattr(part, "text", "")
                if value:
                    out.append(value)

    return "\n".join(out).strip()


def extract_json_block(text: str) -> str:
    """Return a clean JSON string by stripping ``` fences and surrounding prose."""

    cleaned = text.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned, flags=re.I)
    cleaned = re.sub(r"\s*```$", "", cleaned, flags=re.I)

    brace_match = re.search(r"\{.*\}", cleaned, re.S)
    if brace_match:
        cleaned = brace_match.group(0)
    return cleaned.strip()


def parse_json_reply(text: str) -> dict[str, Any]:
    block = extract_json_block(text)
    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"model reply is not valid JSON: {e}\nRaw: {text[:500]}") from e
    if not isinstance(data, dict):
        raise CollaboratorError(f"expected a JSON object, got {type(data).__name__}")
    return data


@dataclass(slots=True)
class OpenAIResponsesBackend:
    """
    LLM backend using the OpenAI Responses API.

    Set OPENAI_API_KEY in your environment.
    """

    model: str = "gpt-4o-mini"
    api_key: str | None = None

    def __post_init__(self) -> None:
        key = self.api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ValueError("OPENAI_API_KEY is not set.")
        self.client = OpenAI(api_key=key)

    def generate(self, prompt: str, context: str | None = None, temperature: float = 0.7) -> str:
        blocks: list[str] = []
        if context and context.strip():
            blocks.append(context.strip())
        blocks.append(prompt.strip())
        full_input = "\n\n".join(blocks)

        response = self.client.responses.create(
            model=self.model,
            input=full_input,
            temperature=temperature,
        )
        return _extract_response_text(response)
