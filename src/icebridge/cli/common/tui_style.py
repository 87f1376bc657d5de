"""Questionary / prompt_toolkit theme for icebridge prompts."""

from __future__ import annotations

from prompt_toolkit.styles import Style

QUESTIONARY_STYLE_CONFIRM = Style.from_dict(
    {
        "qmark": "bold ansibrightcyan",
        "question": "bold ansibrightcyan",
        "answer": "bold ansiwhite",
        "instruction": "ansibrightblack",
        "error": "bold ansired",
    }
)
