"""Static TeX command tables used by :mod:`sep_rag.preprocessing.tex`."""

from __future__ import annotations

import string
import unicodedata
from typing import Dict, Iterable

# Commands that need structural handling and must stay literal.
EXCLUDED_COMMANDS = frozenset(
    {
        "sum",
        "int",
        "prod",
        "lim",
        "bigcup",
        "bigcap",
        "frac",
        "sqrt",
        "hat",
        "bar",
        "vec",
        "dot",
        "tilde",
        "begin",
        "end",
    }
)

GREEK = {
    "alpha": "α",
    "beta": "β",
    "gamma": "γ",
    "delta": "δ",
    "epsilon": "ϵ",
    "varepsilon": "ε",
    "zeta": "ζ",
    "eta": "η",
    "theta": "θ",
    "vartheta": "ϑ",
    "iota": "ι",
    "kappa": "κ",
    "lambda": "λ",
    "mu": "μ",
    "nu": "ν",
    "xi": "ξ",
    "omicron": "ο",
    "pi": "π",
    "varpi": "ϖ",
    "rho": "ρ",
    "varrho": "ϱ",
    "sigma": "σ",
    "varsigma": "ς",
    "tau": "τ",
    "upsilon": "υ",
    "phi": "ϕ",
    "varphi": "φ",
    "chi": "χ",
    "psi": "ψ",
    "omega": "ω",
    "Gamma": "Γ",
    "Delta": "Δ",
    "Theta": "Θ",
    "Lambda": "Λ",
    "Xi": "Ξ",
    "Pi": "Π",
    "Sigma": "Σ",
    "Upsilon": "Υ",
    "Phi": "Φ",
    "Psi": "Ψ",
    "Omega": "Ω",
}

LOGIC = {
    "neg": "¬",
    "lnot": "¬",
    "wedge": "∧",
    "land": "∧",
    "vee": "∨",
    "lor": "∨",
    "forall": "∀",
    "exists": "∃",
    "nexists": "∄",
    "top": "⊤",
    "bot": "⊥",
    "vdash": "⊢",
    "dashv": "⊣",
    "nvdash": "⊬",
    "models": "⊨",
    "vDash": "⊨",
    "nvDash": "⊭",
    "Vdash": "⊩",
    "Box": "□",
    "square": "□",
    "Diamond": "◇",
    "lozenge": "◊",
    "therefore": "∴",
    "because": "∵",
}

RELATIONS = {
    "leq": "≤",
    "le": "≤",
    "geq": "≥",
    "ge": "≥",
    "neq": "≠",
    "ne": "≠",
    "equiv": "≡",
    "approx": "≈",
    "sim": "∼",
    "simeq": "≃",
    "cong": "≅",
    "propto": "∝",
    "prec": "≺",
    "succ": "≻",
    "preceq": "⪯",
    "succeq": "⪰",
    "ll": "≪",
    "gg": "≫",
    "mid": "∣",
    "nmid": "∤",
    "parallel": "∥",
    "perp": "⊥",
    "doteq": "≐",
    "triangleq": "≜",
    "lhd": "⊲",
    "rhd": "⊳",
    "unlhd": "⊴",
    "unrhd": "⊵",
}

ARROWS = {
    "to": "→",
    "rightarrow": "→",
    "leftarrow": "←",
    "gets": "←",
    "leftrightarrow": "↔",
    "Rightarrow": "⇒",
    "Leftarrow": "⇐",
    "Leftrightarrow": "⇔",
    "implies": "⇒",
    "impliedby": "⇐",
    "iff": "⇔",
    "mapsto": "↦",
    "longrightarrow": "⟶",
    "longleftarrow": "⟵",
    "Longrightarrow": "⟹",
    "Longleftarrow": "⟸",
    "longleftrightarrow": "⟷",
    "Longleftrightarrow": "⟺",
    "hookrightarrow": "↪",
    "rightharpoonup": "⇀",
    "leadsto": "⇝",
    "uparrow": "↑",
    "downarrow": "↓",
    "Uparrow": "⇑",
    "Downarrow": "⇓",
    "nrightarrow": "↛",
    "nRightarrow": "⇏",
    "boxright": "□→",
    "diamondright": "◇→",
}

SETS = {
    "in": "∈",
    "notin": "∉",
    "ni": "∋",
    "subset": "⊂",
    "supset": "⊃",
    "subseteq": "⊆",
    "supseteq": "⊇",
    "subsetneq": "⊊",
    "supsetneq": "⊋",
    "nsubseteq": "⊈",
    "cup": "∪",
    "cap": "∩",
    "setminus": "∖",
    "emptyset": "∅",
    "varnothing": "∅",
    "powerset": "℘",
    "wp": "℘",
    "aleph": "ℵ",
    "beth": "ℶ",
    "sqsubseteq": "⊑",
    "sqsupseteq": "⊒",
    "sqcup": "⊔",
    "sqcap": "⊓",
}

OPERATORS = {
    "times": "×",
    "div": "÷",
    "pm": "±",
    "mp": "∓",
    "cdot": "⋅",
    "ast": "∗",
    "star": "⋆",
    "circ": "∘",
    "bullet": "∙",
    "oplus": "⊕",
    "ominus": "⊖",
    "otimes": "⊗",
    "odot": "⊙",
    "uplus": "⊎",
    "amalg": "⨿",
    "partial": "∂",
    "nabla": "∇",
    "infty": "∞",
    "coprod": "∐",
    "oint": "∮",
    "bigwedge": "⋀",
    "bigvee": "⋁",
    "bigoplus": "⨁",
    "bigotimes": "⨂",
}

MISC = {
    "ldots": "…",
    "dots": "…",
    "cdots": "⋯",
    "vdots": "⋮",
    "ddots": "⋱",
    "langle": "⟨",
    "rangle": "⟩",
    "lceil": "⌈",
    "rceil": "⌉",
    "lfloor": "⌊",
    "rfloor": "⌋",
    "ulcorner": "⌜",
    "urcorner": "⌝",
    "lbrace": "{",
    "rbrace": "}",
    "vert": "|",
    "Vert": "‖",
    "prime": "′",
    "angle": "∠",
    "triangle": "△",
    "hbar": "ℏ",
    "ell": "ℓ",
    "Re": "ℜ",
    "Im": "ℑ",
    "dagger": "†",
    "ddagger": "‡",
    "copyright": "©",
    "checkmark": "✓",
    "sharp": "♯",
    "flat": "♭",
    "natural": "♮",
    "clubsuit": "♣",
    "diamondsuit": "♢",
    "heartsuit": "♡",
    "spadesuit": "♠",
}


def _merge(*tables: Dict[str, str]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    for table in tables:
        merged.update(table)
    return merged


SYMBOLS: Dict[str, str] = _merge(GREEK, LOGIC, RELATIONS, ARROWS, SETS, OPERATORS, MISC)

NEGATED_RELATIONS = {
    "models": "⊭",
    "in": "∉",
    "equiv": "≢",
    "sim": "≁",
    "simeq": "≄",
    "approx": "≉",
    "cong": "≇",
    "subset": "⊄",
    "supset": "⊅",
    "subseteq": "⊈",
    "supseteq": "⊉",
    "exists": "∄",
}


def _lookup(names: Iterable[str]) -> str | None:
    for name in names:
        try:
            return unicodedata.lookup(name)
        except KeyError:
            continue
    return None


def _style_map(style: str, letters: str) -> Dict[str, str]:
    """Map ASCII letters to a Unicode mathematical alphanumeric style.

    Code points left reserved in the Mathematical Alphanumeric Symbols block
    (script B, double-struck C, italic h, ...) resolve to their Letterlike
    Symbols counterparts.
    """

    mapping: Dict[str, str] = {}
    for letter in letters:
        case = "CAPITAL" if letter.isupper() else "SMALL"
        names = [
            f"MATHEMATICAL {style} {case} {letter.upper()}",
            f"{style} {case} {letter.upper()}",
        ]
        if style == "ITALIC" and letter == "h":
            names.append("PLANCK CONSTANT")
        glyph = _lookup(names)
        if glyph is not None:
            mapping[letter] = glyph
    return mapping


SCRIPT = _style_map("SCRIPT", string.ascii_uppercase)
DOUBLE_STRUCK = _style_map("DOUBLE-STRUCK", string.ascii_uppercase)
BOLD = _style_map("BOLD", string.ascii_letters)
ITALIC = _style_map("ITALIC", string.ascii_letters)
SANS_SERIF = _style_map("SANS-SERIF", string.ascii_letters)

# Font command -> (style map, upper-case the argument first)
FONT_STYLES = {
    "mathcal": (SCRIPT, True),
    "mathbb": (DOUBLE_STRUCK, True),
    "mathbf": (BOLD, False),
    "mathit": (ITALIC, False),
    "mathsf": (SANS_SERIF, False),
}
