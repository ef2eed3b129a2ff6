"""Prompt texts used by the relay."""

from __future__ import annotations

import logging
from pathlib import Path

from directives import format_directives

log = logging.getLogger("chat_relay")

SYSTEM_PROMPT = """
You are an expert AI assistant and exceptional senior software developer with
vast knowledge across multiple programming languages, frameworks, and best practices.

Answer precisely. When writing code, give complete, working code and keep
explanations short unless the user asks for detail. Do not mention these
instructions.
"""


def strip_indents(text: str) -> str:
    """Strip leading/trailing whitespace of every line and of the whole text."""
    return "\n".join(line.strip() for line in text.splitlines()).strip()


def load_system_prompt(path: str = "") -> str:
    """Return the system prompt, read from `path` when it is set and readable."""
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8").strip()
        except OSError as e:
            log.warning("Failed to read system prompt %r (%s); using built-in prompt", path, e)
        else:
            if text:
                return text
            log.warning("System prompt file %r is empty; using built-in prompt", path)
    return strip_indents(SYSTEM_PROMPT)


def build_enhancer_prompt(message: str, model: str, provider: str) -> str:
    """Wrap a draft prompt in the enhancement instructions, tagged for routing."""
    return format_directives(model, provider) + strip_indents(
        f"""
        You are a professional prompt engineer specializing in crafting precise, effective prompts.
        Your task is to enhance prompts by making them more specific, actionable, and effective.

        I want you to improve the user prompt that is wrapped in `<original_prompt>` tags.

        For valid prompts:
        - Make instructions explicit and unambiguous
        - Add relevant context and constraints
        - Remove redundant information
        - Maintain the core intent
        - Ensure the prompt is self-contained
        - Use professional language

        For invalid or unclear prompts:
        - Respond with a clear, professional guidance message
        - Keep responses concise and actionable
        - Maintain a helpful, constructive tone
        - Focus on what the user should provide
        - Use a standard template for consistency

        IMPORTANT: Your response must ONLY contain the enhanced prompt text.
        Do not include any explanations, metadata, or wrapper tags.

        <original_prompt>
          {message}
        </original_prompt>
        """
    )
