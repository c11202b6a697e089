r"""Jinja2 environments for the preview templates.

Two flavours share one template directory:
- LaTeX templates use LaTeX-compatible delimiters (``\VAR{..}``,
  ``\BLOCK{..}``, ``\#{..}``) so braces in the template body are inert.
- HTML templates use standard delimiters.

Neither autoescapes; callers escape values for their target context.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Undefined, select_autoescape

# Template directory
TEMPLATES_DIR = Path(__file__).parent / "templates"


class SilentUndefined(Undefined):
    """Jinja2 undefined that renders as an empty string instead of raising."""

    def _fail_with_undefined_error(  # type: ignore[override]
        self, *_args: Any, **_kwargs: Any
    ) -> None:
        pass

    def __str__(self) -> str:
        return ""

    def __bool__(self) -> bool:
        return False

    def __iter__(self) -> Any:
        return iter([])

    def __len__(self) -> int:
        return 0


@lru_cache(maxsize=2)
def get_environment(latex: bool) -> Environment:
    """Build (once) the Jinja2 environment for LaTeX or HTML templates."""
    delimiters: dict[str, str] = {}
    if latex:
        delimiters = {
            "block_start_string": r"\BLOCK{",
            "block_end_string": "}",
            "variable_start_string": r"\VAR{",
            "variable_end_string": "}",
            "comment_start_string": r"\#{",
            "comment_end_string": "}",
        }
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=select_autoescape([]),
        undefined=SilentUndefined,
        keep_trailing_newline=False,
        **delimiters,
    )


def render_template(name: str, **context: Any) -> str:
    """Render a template, choosing delimiters from its extension."""
    env = get_environment(latex=name.endswith(".tex"))
    return env.get_template(name).render(**context)
