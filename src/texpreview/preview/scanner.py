r"""Balanced scanning primitives for LaTeX-like markup.

Every argument that may nest (``[...]`` options, ``{...}`` groups,
``\begin..\end`` environments) is read with an explicit depth counter.
Regular expressions are only used to *locate* a construct, never to find
where it ends.

Rules shared by all scanners:
- A backslash escapes the next character, so ``\{``, ``\}``, ``\[`` and
  ``\]`` never change depth.
- With ``quote_opaque=True`` a double-quoted run is skipped as a unit
  (TikZ labels such as ``"a]"``).
- Unterminated groups raise :class:`UnterminatedGroupError`; callers decide
  whether to leave the construct in place or emit a failure fragment.
"""

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

_OPENERS = {"{": "}", "[": "]"}


class UnterminatedGroupError(ValueError):
    """A group or environment was opened but never closed."""


@dataclass(frozen=True)
class Group:
    """A delimited group located in a source string."""

    content: str
    start: int  # index of the opening delimiter
    end: int  # index just past the closing delimiter


@dataclass(frozen=True)
class EnvironmentMatch:
    r"""A ``\begin{name}...\end{name}`` span."""

    name: str
    start: int
    body_start: int
    body_end: int
    end: int

    def body(self, text: str) -> str:
        """Slice the environment body out of ``text``."""
        return text[self.body_start : self.body_end]


# =============================================================================
# Iteration Guards
# =============================================================================


def bounded(cap: int, construct: str) -> Iterator[int]:
    """Yield loop indices up to ``cap`` and log when the cap is exhausted.

    Intended for ``for _ in bounded(...)`` loops that ``break`` once there is
    nothing left to extract; reaching the end of the generator means the
    remaining constructs stay unextracted.
    """
    yield from range(cap)
    logger.warning("Extraction iteration cap reached", construct=construct, cap=cap)


# =============================================================================
# Group Scanning
# =============================================================================


def skip_whitespace(text: str, pos: int) -> int:
    """Advance past spaces, tabs and newlines."""
    while pos < len(text) and text[pos] in " \t\r\n":
        pos += 1
    return pos


def find_group_end(text: str, start: int, quote_opaque: bool = False) -> int:
    """Return the index just past the group opened at ``text[start]``.

    ``[`` groups only count brackets outside braces, so a brace-protected
    ``]`` inside options does not terminate them. ``{`` groups count braces
    only.

    Raises:
        UnterminatedGroupError: If the group never closes
    """
    opener = text[start]
    if opener not in _OPENERS:
        raise ValueError(f"No group opens at position {start}")
    counts_brackets = opener == "["

    braces = 0
    brackets = 0
    in_quote = False
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if quote_opaque and ch == '"':
            in_quote = not in_quote
        elif not in_quote:
            if ch == "{":
                braces += 1
            elif ch == "}":
                if counts_brackets:
                    braces = max(0, braces - 1)
                else:
                    braces -= 1
                    if braces == 0:
                        return i + 1
            elif counts_brackets and braces == 0 and ch == "[":
                brackets += 1
            elif counts_brackets and braces == 0 and ch == "]":
                brackets -= 1
                if brackets == 0:
                    return i + 1
        i += 1
    raise UnterminatedGroupError(f"Group opened at {start} is not closed")


def read_group(
    text: str,
    pos: int,
    opener: str = "{",
    quote_opaque: bool = False,
) -> Group | None:
    """Read a group starting at ``pos`` (after optional whitespace).

    Returns:
        The group, or None when the next non-space character is not ``opener``

    Raises:
        UnterminatedGroupError: If the group is opened but never closed
    """
    start = skip_whitespace(text, pos)
    if start >= len(text) or text[start] != opener:
        return None
    end = find_group_end(text, start, quote_opaque=quote_opaque)
    return Group(content=text[start + 1 : end - 1], start=start, end=end)


def read_arguments(
    text: str,
    pos: int,
    required: int,
    optional: bool = False,
) -> tuple[list[str], str | None, int] | None:
    """Read an optional ``[..]`` argument followed by ``required`` brace groups.

    Returns:
        Tuple of (brace arguments, optional argument or None, end position),
        or None when a required group is missing
    """
    opt: str | None = None
    if optional:
        bracket = read_group(text, pos, "[")
        if bracket is not None:
            opt = bracket.content
            pos = bracket.end
    args: list[str] = []
    for _ in range(required):
        group = read_group(text, pos)
        if group is None:
            return None
        args.append(group.content)
        pos = group.end
    return args, opt, pos


def read_optional_groups(text: str, pos: int, limit: int) -> tuple[list[str], int]:
    """Read up to ``limit`` consecutive ``[..]`` groups (``\\parbox[t][3cm][s]``)."""
    found: list[str] = []
    for _ in range(limit):
        group = read_group(text, pos, "[")
        if group is None:
            break
        found.append(group.content)
        pos = group.end
    return found, pos


# =============================================================================
# Commands
# =============================================================================


def command_pattern(name: str) -> re.Pattern[str]:
    """Pattern matching ``\\name`` not followed by another letter."""
    return re.compile(r"\\" + re.escape(name) + r"(?![A-Za-z])")


def replace_command(
    text: str,
    name: str,
    required: int,
    render: Callable[[list[str], str | None], str],
    optional: bool = False,
) -> str:
    """Replace every ``\\name[opt]{a}{b}..`` with ``render(args, opt)``.

    Occurrences whose arguments are missing or unterminated are left as-is.
    """
    pattern = command_pattern(name)
    out: list[str] = []
    pos = 0
    while True:
        match = pattern.search(text, pos)
        if match is None:
            break
        try:
            parsed = read_arguments(text, match.end(), required, optional=optional)
        except UnterminatedGroupError:
            parsed = None
        if parsed is None:
            out.append(text[pos : match.end()])
            pos = match.end()
            continue
        args, opt, end = parsed
        out.append(text[pos : match.start()])
        out.append(render(args, opt))
        pos = end
    out.append(text[pos:])
    return "".join(out)


# =============================================================================
# Environments
# =============================================================================


def _begin_end_patterns(name: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    escaped = re.escape(name)
    return (
        re.compile(r"\\begin\s*\{" + escaped + r"\}"),
        re.compile(r"\\end\s*\{" + escaped + r"\}"),
    )


def find_environment(text: str, name: str, start: int = 0) -> EnvironmentMatch | None:
    r"""Find the first ``\begin{name}`` at or after ``start`` and its matching end.

    Nested environments of the same name are balanced.

    Returns:
        The match, or None when no such environment begins

    Raises:
        UnterminatedGroupError: If the environment never closes
    """
    begin_re, end_re = _begin_end_patterns(name)
    begin = begin_re.search(text, start)
    if begin is None:
        return None

    depth = 1
    pos = begin.end()
    while True:
        next_begin = begin_re.search(text, pos)
        next_end = end_re.search(text, pos)
        if next_end is None:
            raise UnterminatedGroupError(f"Environment {name} opened at {begin.start()} is not closed")
        if next_begin is not None and next_begin.start() < next_end.start():
            depth += 1
            pos = next_begin.end()
            continue
        depth -= 1
        if depth == 0:
            return EnvironmentMatch(
                name=name,
                start=begin.start(),
                body_start=begin.end(),
                body_end=next_end.start(),
                end=next_end.end(),
            )
        pos = next_end.end()


def first_environment(
    text: str,
    names: tuple[str, ...] | list[str],
    start: int = 0,
) -> str | None:
    """Return the name of whichever environment in ``names`` begins first."""
    best: tuple[int, str] | None = None
    for name in names:
        begin_re, _ = _begin_end_patterns(name)
        match = begin_re.search(text, start)
        if match is not None and (best is None or match.start() < best[0]):
            best = (match.start(), name)
    return best[1] if best else None


def find_leaf_environment(
    text: str,
    names: tuple[str, ...] | list[str],
) -> EnvironmentMatch | None:
    """First environment among ``names`` whose body begins none of ``names``.

    Unterminated environments are skipped so a closed inner one can still
    be found.
    """
    alternatives = "|".join(re.escape(n) for n in names)
    begin_re = re.compile(r"\\begin\s*\{(" + alternatives + r")\}")
    for begin in begin_re.finditer(text):
        try:
            env = find_environment(text, begin.group(1), begin.start())
        except UnterminatedGroupError:
            continue
        if env is None or env.start != begin.start():
            continue
        if begin_re.search(env.body(text)) is None:
            return env
    return None


def strip_comments(text: str) -> str:
    """Remove ``%`` comments up to end of line, keeping ``\\%``."""
    return re.sub(r"(?<!\\)%[^\n]*", "", text)
