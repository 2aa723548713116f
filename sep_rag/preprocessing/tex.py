"""Symbol-level substitution of inline TeX.

Only text inside ``\\( ... \\)`` and ``\\[ ... \\]`` is touched. Expressions
that are fully resolved lose their delimiters; anything that still carries
a backslash keeps them so callers can detect it with :func:`has_residual_tex`.
"""

from __future__ import annotations

import re

from sep_rag.preprocessing.tex_symbols import (
    EXCLUDED_COMMANDS,
    FONT_STYLES,
    NEGATED_RELATIONS,
    SYMBOLS,
)

TEX_PATTERN = re.compile(r"(?:\\\(|\\\[)(.*?)(?:\\\)|\\\])", re.DOTALL)

_TEXT_COMMAND = re.compile(r"\\text\{([^}]*)\}")
_FONT_COMMAND = re.compile(r"\\(mathcal|mathbb|mathbf|mathit|mathsf)\{([^}]*)\}")
_ROMAN_COMMAND = re.compile(r"\\mathrm\{([^}]*)\}")
_NEGATED = re.compile(r"\\not\\([a-zA-Z]+)")
_SQRT = re.compile(r"\\sqrt\{([^}]*)\}")
_COMMAND = re.compile(r"\\([a-zA-Z]+)")
_LEFT_RIGHT = re.compile(r"\\(?:left|right)\b")
_SINGLE_LETTER_ESCAPE = re.compile(r"\\[rb]([A-Za-z])(?![A-Za-z])")
_LOOSE_BACKSLASH = re.compile(r"\s+\\\s+")

_SPACING = (
    (re.compile(r"\\ "), " "),
    (re.compile(r"\\\n"), " "),
    (re.compile(r"\\,"), " "),
    (re.compile(r"\\;"), " "),
    (re.compile(r"\\:"), " "),
    (re.compile(r"\\!"), ""),
    (re.compile(r"\\qquad\b"), " "),
    (re.compile(r"\\quad\b"), " "),
)


def _unescape_spaces(content: str) -> str:
    return content.replace("\\ ", " ").replace("\\\n", " ")


def _clean_argument(content: str) -> str:
    return " ".join(_unescape_spaces(content).split())


def _apply_font(match: re.Match[str]) -> str:
    style, upper_first = FONT_STYLES[match.group(1)]
    converted = []
    for char in _clean_argument(match.group(2)):
        key = char.upper() if upper_first else char
        converted.append(style.get(key, char))
    return "".join(converted)


def _negate(match: re.Match[str]) -> str:
    command = match.group(1)
    if command in NEGATED_RELATIONS:
        return NEGATED_RELATIONS[command]
    return "¬" + SYMBOLS.get(command, "\\" + command)


def _symbol(match: re.Match[str]) -> str:
    command = match.group(1)
    if command in EXCLUDED_COMMANDS or command not in SYMBOLS:
        return match.group(0)
    return SYMBOLS[command]


def substitute_expression(content: str) -> str:
    """Run the substitution pipeline over the inside of one math expression."""

    content = _TEXT_COMMAND.sub(lambda m: _unescape_spaces(m.group(1)), content)
    content = _FONT_COMMAND.sub(_apply_font, content)
    content = _ROMAN_COMMAND.sub(lambda m: _clean_argument(m.group(1)), content)
    content = _NEGATED.sub(_negate, content)
    content = _SQRT.sub(lambda m: f"√({_clean_argument(m.group(1))})", content)
    content = _COMMAND.sub(_symbol, content)
    content = _LEFT_RIGHT.sub("", content)
    content = _SINGLE_LETTER_ESCAPE.sub(r"\1", content)
    for pattern, replacement in _SPACING:
        content = pattern.sub(replacement, content)
    content = content.replace("\\{", "{").replace("\\}", "}")
    return _LOOSE_BACKSLASH.sub(" ", content).strip()


def replace_tex_with_symbols(text: str) -> str:
    """Replace delimited TeX in ``text`` with Unicode where possible."""

    def _replace(match: re.Match[str]) -> str:
        processed = substitute_expression(match.group(1))
        if "\\" in processed:
            original = match.group(0)
            return f"{original[:2]}{processed}{original[-2:]}"
        return processed

    return TEX_PATTERN.sub(_replace, text)


def has_residual_tex(text: str) -> bool:
    """Return ``True`` when ``text`` still contains delimited math."""

    return TEX_PATTERN.search(text) is not None
