"""Tests for the balanced scanning primitives."""

import pytest

from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_environment,
    find_group_end,
    find_leaf_environment,
    first_environment,
    read_arguments,
    read_group,
    read_optional_groups,
    replace_command,
    strip_comments,
)


class TestGroupScanning:
    """Tests for brace and bracket groups."""

    def test_nested_braces(self) -> None:
        """Test that nested braces are balanced."""
        text = "{a{b}c}rest"
        assert find_group_end(text, 0) == 7

    def test_escaped_braces_do_not_count(self) -> None:
        """Test that escaped braces never change depth."""
        text = r"{a\}b}"
        assert find_group_end(text, 0) == len(text)

    def test_brace_protected_bracket_in_options(self) -> None:
        """Test that a bracket inside braces does not end the options."""
        text = "[label={a]}, draw]{x}"
        group = read_group(text, 0, "[")
        assert group is not None
        assert group.content == "label={a]}, draw"

    def test_quoted_bracket_is_opaque(self) -> None:
        """Test that quoted runs are skipped when requested."""
        text = '[label="a]", red] body'
        group = read_group(text, 0, "[", quote_opaque=True)
        assert group is not None
        assert group.content == 'label="a]", red'

    def test_unterminated_group_raises(self) -> None:
        """Test that an unclosed group raises."""
        with pytest.raises(UnterminatedGroupError):
            find_group_end("{never closed", 0)

    def test_read_group_wrong_opener(self) -> None:
        """Test that a different next character yields None."""
        assert read_group("  x{a}", 0) is None

    def test_read_arguments_with_optional(self) -> None:
        """Test reading an optional argument and brace groups."""
        parsed = read_arguments(r"[short]{A}{B} tail", 0, 2, optional=True)
        assert parsed is not None
        args, opt, end = parsed
        assert args == ["A", "B"]
        assert opt == "short"
        assert end == len("[short]{A}{B}")

    def test_read_arguments_missing_group(self) -> None:
        """Test that a missing required group yields None."""
        assert read_arguments("{A} no second", 0, 2) is None

    def test_read_optional_groups_limit(self) -> None:
        """Test reading a bounded number of bracket groups."""
        groups, pos = read_optional_groups("[t][3cm][s]{w}", 0, 2)
        assert groups == ["t", "3cm"]
        assert pos == len("[t][3cm]")


class TestCommands:
    """Tests for command replacement."""

    def test_replace_command_nested_argument(self) -> None:
        """Test that nested arguments are read whole."""
        text = r"a \textbf{x {y} z} b"
        out = replace_command(text, "textbf", 1, lambda args, _opt: f"<{args[0]}>")
        assert out == "a <x {y} z> b"

    def test_replace_command_respects_name_boundary(self) -> None:
        """Test that longer command names are not matched."""
        out = replace_command(r"\refx{a} \ref{b}", "ref", 1, lambda args, _opt: f"[{args[0]}]")
        assert out == r"\refx{a} [b]"

    def test_replace_command_leaves_unterminated(self) -> None:
        """Test that unterminated arguments are left as-is."""
        text = r"\emph{open"
        assert replace_command(text, "emph", 1, lambda args, _opt: "X") == text

    def test_strip_comments_keeps_escaped_percent(self) -> None:
        """Test that escaped percent signs survive."""
        assert strip_comments("50\\% done % note\nnext") == "50\\% done \nnext"


class TestEnvironments:
    """Tests for environment location."""

    def test_find_environment_balances_nesting(self) -> None:
        """Test that nested same-name environments are balanced."""
        text = r"\begin{a}x\begin{a}y\end{a}z\end{a}!"
        env = find_environment(text, "a")
        assert env is not None
        assert env.body(text) == r"x\begin{a}y\end{a}z"
        assert text[env.end :] == "!"

    def test_find_environment_unterminated(self) -> None:
        """Test that an unclosed environment raises."""
        with pytest.raises(UnterminatedGroupError):
            find_environment(r"\begin{a} forever", "a")

    def test_first_environment(self) -> None:
        """Test picking whichever environment begins first."""
        text = r"\begin{enumerate}\end{enumerate}\begin{itemize}\end{itemize}"
        assert first_environment(text, ("itemize", "enumerate")) == "enumerate"
        assert first_environment("plain", ("itemize",)) is None

    def test_find_leaf_environment(self) -> None:
        """Test that the innermost environment is found first."""
        text = r"\begin{itemize}\item a \begin{enumerate}\item b\end{enumerate}\end{itemize}"
        leaf = find_leaf_environment(text, ("itemize", "enumerate"))
        assert leaf is not None
        assert leaf.name == "enumerate"

    def test_find_leaf_skips_unterminated(self) -> None:
        """Test that an unclosed outer environment does not hide a closed one."""
        text = r"\begin{itemize}\item a \begin{itemize}\item b\end{itemize}"
        leaf = find_leaf_environment(text, ("itemize",))
        assert leaf is not None
        assert leaf.body(text) == r"\item b"


class TestBounded:
    """Tests for the iteration guard."""

    def test_bounded_yields_cap_indices(self) -> None:
        """Test that the guard yields exactly cap indices."""
        assert list(bounded(3, "test")) == [0, 1, 2]

    def test_bounded_stops_runaway_loop(self) -> None:
        """Test that a loop that never breaks still terminates."""
        iterations = 0
        for _ in bounded(5, "test"):
            iterations += 1
        assert iterations == 5
