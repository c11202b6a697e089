r"""Pre-parse repairs for generated markup.

Generated documents carry a handful of recurring defects that are cheaper
to repair up front than to tolerate in every extractor:

- Markdown code fences around the document
- Literal ``\n`` sequences standing in for line breaks
- Hallucinated "References" section headers ahead of the bibliography
- Fragmented math such as ``$a$ = $b$``
- Dollar signs doubled inside ``\[..\]`` or ``\(..\)``
- Subscripts stranded outside their formula (``$\theta$_t``)
- File and shell commands that have no business in a preview

Verbatim and ``\verb`` spans are set aside first and come back untouched.
"""

import re
from dataclasses import dataclass, field

from texpreview.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class HealResult:
    """Result of healing a document."""

    content: str
    warnings: list[str] = field(default_factory=list)
    removed_commands: list[str] = field(default_factory=list)


# =============================================================================
# Patterns
# =============================================================================

_FENCE_OPEN_RE = re.compile(r"^\s*```(?:latex|tex)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")

# Command names starting with "n" that a literal \n must not break
_N_COMMANDS = (
    "ewline", "ewpage", "oindent", "ewtheorem", "ewcommand", "ewenvironment",
    "ewcolumntype", "ewblock", "ode", "abla", "eq", "eg", "u", "ot", "otin",
    "ormalsize", "olimits", "onumber", "otag", "icefrac", "i", "mid", "leq",
    "geq", "atural", "earrow", "warrow", "ocite", "obreak",
)
_LITERAL_NEWLINE_RE = re.compile(
    r"(?<!\\)\\n(?!(?:" + "|".join(sorted(_N_COMMANDS, key=len, reverse=True)) + r")(?![A-Za-z]))"
)

_GHOST_HEADER_RE = re.compile(
    r"\\(?:sub)?section\*?\s*\{\s*(?:References|Bibliography|Works\s+Cited)\s*\}",
    re.IGNORECASE,
)

_MATH_CHAIN_RE = re.compile(r"(\$[^$\n]+\$)[ \t]*=[ \t]*(\$[^$\n]+\$)[ \t]*\+[ \t]*(.*)$", re.MULTILINE)
_MATH_PAIR_RE = re.compile(r"(?<!\$)(\$[^$\n]+\$)[ \t]*([=+\-])[ \t]*(\$[^$\n]+\$)(?!\$)")
_DISPLAY_BRACKET_RE = re.compile(r"\\\[(.*?)\\\]", re.DOTALL)
_INLINE_PAREN_RE = re.compile(r"\\\((.*?)\\\)", re.DOTALL)
_UNESCAPED_DOLLAR_RE = re.compile(r"(?<!\\)\$")
_ORPHAN_SUBSCRIPT_RE = re.compile(r"\$([^$\n]+)\$_([A-Za-z0-9]+)")
_ORPHAN_GROUP_SUBSCRIPT_RE = re.compile(r"\$([^$\n]+)\$_\s*\{([^}]+)\}")

# Spans whose content is shown literally and must not be repaired
_VERBATIM_RE = re.compile(
    r"\\begin\s*\{(verbatim\*?|Verbatim|lstlisting|minted)\}.*?\\end\s*\{\1\}"
    r"|\\verb\*?([^A-Za-z\s*])[^\n]*?\2",
    re.DOTALL,
)
_SHELTER_RE = re.compile("\x00(\\d+)\x00")

# (description, pattern) for commands that read files or run code
UNSAFE_COMMAND_PATTERNS: list[tuple[str, str]] = [
    ("shell escape", r"(?:\\immediate\s*)?\\write18\s*\{[^}]*\}"),
    ("file input", r"\\input\s*\{[^}]*\}"),
    ("file input", r"\\include\s*\{[^}]*\}"),
    ("file read", r"\\openin\s*\d*\s*=?\s*[^\s\\]*"),
    ("file write", r"\\openout\s*\d*\s*=?\s*[^\s\\]*"),
    ("code execution", r"\\directlua\s*\{[^}]*\}"),
    ("catcode manipulation", r"\\catcode\s*[`'\d][^\n]*"),
]


# =============================================================================
# Healer
# =============================================================================


class DocumentHealer:
    """Apply the pre-parse repairs in a fixed order."""

    def heal(self, content: str) -> HealResult:
        """Repair a raw document.

        Args:
            content: Raw markup as produced by the generator

        Returns:
            HealResult with the repaired markup and any warnings
        """
        result = HealResult(content=content)
        if not content:
            return result

        text = _FENCE_OPEN_RE.sub("", content, count=1)
        text = _FENCE_CLOSE_RE.sub("", text, count=1)

        sheltered: list[str] = []

        def _shelter(match: re.Match[str]) -> str:
            sheltered.append(match.group(0))
            return f"\x00{len(sheltered) - 1}\x00"

        text = _VERBATIM_RE.sub(_shelter, text.replace("\x00", ""))
        text = _LITERAL_NEWLINE_RE.sub("\n", text)
        text = _GHOST_HEADER_RE.sub("", text)
        text = self._merge_math_fragments(text)
        text = _DISPLAY_BRACKET_RE.sub(lambda m: "\\[" + _UNESCAPED_DOLLAR_RE.sub("", m.group(1)) + "\\]", text)
        text = _INLINE_PAREN_RE.sub(lambda m: "\\(" + _UNESCAPED_DOLLAR_RE.sub("", m.group(1)) + "\\)", text)
        text = _ORPHAN_SUBSCRIPT_RE.sub(r"$\1_{\2}$", text)
        text = _ORPHAN_GROUP_SUBSCRIPT_RE.sub(r"$\1_{\2}$", text)

        text = self._remove_unsafe(text, result)
        result.content = _SHELTER_RE.sub(lambda m: sheltered[int(m.group(1))], text)
        return result

    def _merge_math_fragments(self, text: str) -> str:
        def _chain(match: re.Match[str]) -> str:
            left, right, rest = match.group(1), match.group(2), match.group(3)
            if not any(ch in rest for ch in "\\_^"):
                return match.group(0)
            return f"$$ {left[1:-1]} = {right[1:-1]} + {rest.strip()} $$"

        text = _MATH_CHAIN_RE.sub(_chain, text)
        return _MATH_PAIR_RE.sub(lambda m: f"{m.group(1)[:-1]} {m.group(2)} {m.group(3)[1:]}", text)

    def _remove_unsafe(self, text: str, result: HealResult) -> str:
        for description, pattern in UNSAFE_COMMAND_PATTERNS:
            matches = re.findall(pattern, text, re.IGNORECASE)
            if not matches:
                continue
            result.removed_commands.extend(matches)
            result.warnings.append(f"Removed {description} command")
            text = re.sub(pattern, "", text, flags=re.IGNORECASE)

        if result.removed_commands:
            logger.warning(
                "Removed unsafe commands",
                count=len(result.removed_commands),
                commands=result.removed_commands[:10],
            )
        return text


def heal(content: str) -> str:
    """Heal with a default healer."""
    return DocumentHealer().heal(content).content
