r"""Diagram layout heuristic and sandbox builder.

TikZ diagrams are rendered in the browser by TikZJax inside a sandboxed
iframe. TikZJax handles only a subset of TikZ and has no notion of the page
width, so before a diagram is sandboxed it is:

1. Reduced to a safe subset (ASCII only, comments and font switches removed,
   node lists flattened, ampersands escaped, brace decorations redrawn as
   explicit Bezier paths).
2. Measured: node/draw/arrow counts, average label length, bounding box of
   explicit coordinates, any explicit ``node distance``.
3. Classified into a layout intent (compact, medium, large, wide, flat).
4. Given synthesized picture options for that intent, merged with what the
   author wrote.

Everything here is a pure function of (body, options) and the calibration
constants, so the same input always yields the same layout.
Frame ids also carry the diagram's position in its document so repeated
diagrams still get distinct frames.
"""

import hashlib
import html
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from texpreview.config import DiagramCalibration, Settings, get_settings
from texpreview.preview.templating import render_template
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

TIKZJAX_BASE = "https://tikzjax.com/v1"

PGFPLOTS_PLACEHOLDER = (
    '<div class="latex-placeholder-box warning">Complex diagram (pgfplots) - '
    "not supported in browser preview, see compiled output</div>"
)

_COORD_RE = re.compile(r"\(\s*(-?[\d.]+)\s*,\s*(-?[\d.]+)\s*\)")
_NODE_LABEL_RE = re.compile(r"\\node[^;]*\{([^}]*)\}")
_BRACE_DRAW_RE = re.compile(
    r"\\draw\[\s*decorate\s*,\s*decoration\s*=\s*\{\s*brace([^}]*)\}\]\s*"
    r"\(([^)]+)\)\s*--\s*\(([^)]+)\)\s*node\[([^\]]*)\]\s*\{([^}]*)\};"
)
_OPTION_KEY_RE = re.compile(r"^\s*([A-Za-z][A-Za-z /.]*?)\s*(?:=|$)")


class LayoutIntent(str, Enum):
    """How a diagram should be fitted to the preview width."""

    COMPACT = "compact"
    MEDIUM = "medium"
    LARGE = "large"
    WIDE = "wide"
    FLAT = "flat"


@dataclass(frozen=True)
class DiagramSignals:
    """Measurements taken from a sanitized diagram body and its options."""

    node_count: int
    draw_count: int
    arrow_count: int
    avg_label_chars: float
    hspan: float
    vspan: float
    node_distance: float | None

    @property
    def aspect(self) -> float:
        """Horizontal/vertical span ratio (0 when there is no vertical span)."""
        return self.hspan / self.vspan if self.vspan > 0 else 0.0

    @property
    def is_relative(self) -> bool:
        """True when the diagram places nodes without explicit coordinates."""
        return self.hspan == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_count": self.node_count,
            "draw_count": self.draw_count,
            "arrow_count": self.arrow_count,
            "avg_label_chars": round(self.avg_label_chars, 2),
            "hspan": self.hspan,
            "vspan": self.vspan,
            "aspect": round(self.aspect, 3),
            "node_distance": self.node_distance,
        }


@dataclass(frozen=True)
class DiagramLayout:
    """Final layout decision for one diagram."""

    intent: LayoutIntent
    signals: DiagramSignals
    text_heavy: bool
    options: tuple[str, ...] = field(default_factory=tuple)

    @property
    def option_string(self) -> str:
        """Options rendered as a TikZ ``[...]`` argument."""
        return "[" + ", ".join(self.options) + "]"

    def option(self, key: str) -> str | None:
        """Value of the last option named ``key``, if any."""
        return _option_value(list(self.options), key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "text_heavy": self.text_heavy,
            "options": list(self.options),
            "signals": self.signals.to_dict(),
        }


# =============================================================================
# Option Helpers
# =============================================================================


def split_options(options: str) -> list[str]:
    """Split a TikZ option string at top-level commas.

    Surrounding ``[...]`` is tolerated; braces and quoted strings are opaque.
    """
    text = options.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]

    parts: list[str] = []
    depth = 0
    in_quote = False
    current: list[str] = []
    for ch in text:
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote and ch in "{[":
            depth += 1
        elif not in_quote and ch in "}]":
            depth -= 1
        if ch == "," and depth == 0 and not in_quote:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _option_key(option: str) -> str:
    match = _OPTION_KEY_RE.match(option)
    return match.group(1).strip() if match else option.strip()


def _option_value(options: list[str], key: str) -> str | None:
    value: str | None = None
    for option in options:
        if _option_key(option) == key:
            _, _, rest = option.partition("=")
            value = rest.strip()
    return value


def _has_option(options: list[str], key: str) -> bool:
    return any(_option_key(o) == key for o in options)


def _without(options: list[str], *keys: str) -> list[str]:
    return [o for o in options if _option_key(o) not in keys]


def _leading_number(value: str | None) -> float | None:
    if value is None:
        return None
    match = re.match(r"\s*(-?\d*\.?\d+)", value)
    return float(match.group(1)) if match else None


def _num(value: float) -> str:
    """Compact decimal rendering (``1.35``, ``10``, ``0.5``)."""
    return format(round(value, 4), "g")


# =============================================================================
# Safe Subset
# =============================================================================


def is_pgfplots(body: str) -> bool:
    """Plot environments are not supported by the browser renderer."""
    return "\\begin{axis}" in body or "\\addplot" in body


def to_safe_subset(body: str, calibration: DiagramCalibration | None = None) -> str:
    """Reduce a diagram body to what the browser TikZ engine can run."""
    cal = calibration or get_settings().diagram

    safe = body.encode("ascii", "ignore").decode("ascii")
    # Comments must go before newlines are flattened
    safe = re.sub(r"(?<!\\)%[^\n]*", "", safe)
    safe = re.sub(r"\\textbf\s*\{", r"{\\bfseries ", safe)
    safe = re.sub(r"\\textit\s*\{", r"{\\itshape ", safe)
    safe = re.sub(r"\\(?:sffamily|rmfamily|ttfamily)(?![A-Za-z])", "", safe)
    safe = re.sub(r"\\n(?![A-Za-z])", " ", safe)
    safe = safe.replace("\r", " ").replace("\n", " ")

    # Lists inside nodes become manual bullets
    safe = re.sub(r"\\begin\{itemize\}\[[^\]]*\]", r"\\begin{itemize}", safe)
    if "\\begin{itemize}" in safe:
        safe = safe.replace("\\begin{itemize}", "").replace("\\end{itemize}", "")
        safe = re.sub(r"\\item\s+", r"\\par $\\bullet$ ", safe)

    safe = safe.replace("\\\\&", "\\\\ \\&")
    safe = re.sub(r"(?<!\\)&", r"\\&", safe)

    safe = _BRACE_DRAW_RE.sub(lambda m: _brace_polyfill(m, cal), safe)

    # Never let the body close the sandbox's script element
    return safe.replace("</", "<\\/")


def _parse_point(text: str) -> tuple[float, float]:
    parts = [p.strip() for p in text.split(",")]
    coords: list[float] = []
    for part in parts[:2]:
        try:
            coords.append(float(part))
        except ValueError:
            coords.append(0.0)
    while len(coords) < 2:
        coords.append(0.0)
    return coords[0], coords[1]


def _brace_polyfill(match: re.Match[str], cal: DiagramCalibration) -> str:
    """Redraw a ``decoration={brace}`` path as two Bezier segments plus a label."""
    deco_opts, start, end, node_opts, label = match.groups()
    direction = -1 if "mirror" in deco_opts else 1
    x1, y1 = _parse_point(start)
    x2, y2 = _parse_point(end)
    mid_x, mid_y = (x1 + x2) / 2, (y1 + y2) / 2
    mag, tip = cal.brace_magnitude, cal.brace_tip
    label_offset = tip + cal.brace_label_offset

    if abs(y2 - y1) > abs(x2 - x1):
        # Vertical brace bulges left by default
        sign = -direction
        c1 = (x1 + sign * mag, y1)
        c2 = (mid_x + sign * mag, mid_y)
        tip_pt = (mid_x + sign * tip, mid_y)
        c3 = (x2 + sign * mag, y2)
        label_pt = (mid_x + sign * label_offset, mid_y)
    else:
        # Horizontal brace bulges up by default
        sign = direction
        c1 = (x1, y1 + sign * mag)
        c2 = (mid_x, mid_y + sign * mag)
        tip_pt = (mid_x, mid_y + sign * tip)
        c3 = (x2, y2 + sign * mag)
        label_pt = (mid_x, mid_y + sign * label_offset)

    def pt(p: tuple[float, float]) -> str:
        return f"({_num(p[0])},{_num(p[1])})"

    return (
        f"\\draw[thick] {pt((x1, y1))} .. controls {pt(c1)} and {pt(c2)} .. {pt(tip_pt)}"
        f" .. controls {pt(c2)} and {pt(c3)} .. {pt((x2, y2))};"
        f" \\node[{node_opts}] at {pt(label_pt)} {{{label}}};"
    )


# =============================================================================
# Signals and Classification
# =============================================================================


def measure(safe_body: str, options: str = "") -> DiagramSignals:
    """Collect layout signals from a sanitized body and its options."""
    node_count = len(re.findall(r"\\node", safe_body))
    draw_count = len(re.findall(r"\\draw", safe_body))
    arrow_count = safe_body.count("->")

    total_label = 0
    for label in _NODE_LABEL_RE.findall(safe_body):
        stripped = re.sub(r"\\[a-zA-Z]+", "", label).replace("{", "").replace("}", "")
        total_label += len(stripped)
    avg_label = total_label / node_count if node_count else 0.0

    xs: list[float] = []
    ys: list[float] = []
    for raw_x, raw_y in _COORD_RE.findall(safe_body):
        try:
            xs.append(float(raw_x))
        except ValueError:
            pass
        try:
            ys.append(float(raw_y))
        except ValueError:
            pass
    hspan = max(xs) - min(xs) if xs else 0.0
    vspan = max(ys) - min(ys) if ys else 0.0

    distance = _leading_number(_option_value(split_options(options), "node distance"))

    return DiagramSignals(
        node_count=node_count,
        draw_count=draw_count,
        arrow_count=arrow_count,
        avg_label_chars=avg_label,
        hspan=hspan,
        vspan=vspan,
        node_distance=distance,
    )


def classify(signals: DiagramSignals, calibration: DiagramCalibration) -> LayoutIntent:
    """Pick a layout intent.

    Priority: flat, absolute layouts, explicit node distance, text density,
    node count.
    """
    cal = calibration
    text_heavy = signals.avg_label_chars > cal.text_heavy_label_chars

    if signals.hspan > 0:
        if signals.vspan > 0 and signals.aspect > cal.flat_aspect_threshold:
            return LayoutIntent.FLAT
        if not cal.wide_as_large and signals.hspan > cal.wide_span_threshold:
            return LayoutIntent.WIDE
        return LayoutIntent.LARGE

    if signals.node_distance is not None:
        if signals.node_distance < cal.compact_distance_below:
            return LayoutIntent.COMPACT
        if signals.node_distance >= cal.large_distance_from:
            return LayoutIntent.LARGE
        return LayoutIntent.MEDIUM

    if text_heavy:
        return LayoutIntent.LARGE
    if signals.node_count >= cal.compact_node_count:
        return LayoutIntent.COMPACT
    return LayoutIntent.MEDIUM


# =============================================================================
# Option Synthesis
# =============================================================================


def synthesize_options(
    intent: LayoutIntent,
    signals: DiagramSignals,
    user_options: list[str],
    calibration: DiagramCalibration,
) -> list[str]:
    """Merge the author's options with options derived from the intent."""
    cal = calibration
    text_heavy = signals.avg_label_chars > cal.text_heavy_label_chars
    kept = list(user_options)
    extra: list[str] = []

    if intent is LayoutIntent.COMPACT:
        scale = cal.compact_scale_dense if signals.node_count >= cal.compact_node_count else cal.compact_scale
        if not _has_option(kept, "scale"):
            extra.append(f"scale={_num(scale)}")
        if not _has_option(kept, "transform shape"):
            extra.append("transform shape")
        if not _has_option(kept, "node distance"):
            extra.append(f"node distance={_num(cal.compact_node_distance_cm)}cm")

    elif intent is LayoutIntent.LARGE:
        optimal = min(cal.large_max_unit, cal.large_target_width_cm / (signals.hspan or 1))
        clamp = cal.large_clamp_wide if signals.hspan > cal.large_wide_span else cal.large_clamp_narrow
        x_unit = max(cal.large_min_unit, min(clamp, optimal))
        if signals.vspan > 0:
            y_unit = min(cal.large_y_max, max(cal.large_y_min, cal.large_target_height_cm / signals.vspan))
        else:
            y_unit = cal.large_relative_y
        kept = _without(kept, "x", "y")
        extra.append(f"x={x_unit:.2f}cm")
        extra.append(f"y={y_unit:.2f}cm")
        if not _has_option(kept, "font"):
            extra.append("font=\\small")

        target = cal.large_distance_text_cm if text_heavy else cal.large_distance_cm
        if signals.node_distance is None:
            extra.append(f"node distance={_num(target)}cm")
        elif (text_heavy and signals.node_distance < target) or (
            not text_heavy and signals.node_distance < cal.large_min_distance_cm
        ):
            kept = _without(kept, "node distance")
            extra.append(f"node distance={_num(target)}cm")

        if not _has_option(kept, "text width"):
            extra.append("every node/.append style={align=center}")

    elif intent is LayoutIntent.WIDE:
        factor = min(1.0, cal.wide_span_threshold / signals.hspan) if signals.hspan else 1.0
        scale = max(cal.wide_min_scale, factor * cal.wide_scale_factor)
        if not _has_option(kept, "scale"):
            extra.append(f"scale={scale:.2f}")
        if not _has_option(kept, "transform shape"):
            extra.append("transform shape")

    elif intent is LayoutIntent.FLAT:
        y_mult = min(cal.flat_y_max, max(cal.flat_y_min, signals.aspect / 2.0))
        base_x = _leading_number(_option_value(kept, "x")) or 1.0
        base_y = _leading_number(_option_value(kept, "y")) or 1.0
        kept = _without(kept, "x", "y")
        extra.append(f"x={base_x * cal.flat_x_multiplier:.1f}cm")
        extra.append(f"y={base_y * y_mult:.1f}cm")
        extra.append("scale=1.0")
        if signals.node_count >= cal.flat_small_font_nodes and not _has_option(kept, "font"):
            extra.append("font=\\small")

    else:
        explicit_grid = _has_option(kept, "x") or _has_option(kept, "y")
        if 0 < signals.hspan <= cal.wide_span_threshold:
            scale = 1.0
        elif signals.node_count >= cal.medium_dense_nodes:
            scale = cal.medium_scale_dense
        else:
            scale = cal.medium_scale
        if not _has_option(kept, "scale") and not explicit_grid:
            extra.append(f"scale={_num(scale)}")
        if explicit_grid and not _has_option(kept, "transform shape"):
            extra.append("transform shape")
        if not _has_option(kept, "node distance"):
            extra.append(f"node distance={_num(cal.medium_node_distance_cm)}cm")

    if (
        text_heavy
        and signals.is_relative
        and intent is not LayoutIntent.LARGE
        and not _has_option(kept + extra, "x")
    ):
        extra.append(f"x={_num(cal.text_heavy_x_cm)}cm")
        extra.append(f"y={_num(cal.text_heavy_y_cm)}cm")

    return kept + extra


# =============================================================================
# Public API
# =============================================================================


def plan_layout(body: str, options: str = "", settings: Settings | None = None) -> DiagramLayout:
    """Measure, classify and synthesize options for one diagram body."""
    cal = (settings or get_settings()).diagram
    safe = to_safe_subset(body, cal)
    signals = measure(safe, options)
    intent = classify(signals, cal)
    merged = synthesize_options(intent, signals, split_options(options), cal)
    return DiagramLayout(
        intent=intent,
        signals=signals,
        text_heavy=signals.avg_label_chars > cal.text_heavy_label_chars,
        options=tuple(merged),
    )


def layout_diagram(
    body: str,
    options: str = "",
    settings: Settings | None = None,
    sequence: int = 0,
) -> str:
    """Build the sandboxed HTML fragment for one diagram.

    Args:
        body: Diagram source between the begin and end markers
        options: The picture's option string (with or without brackets)
        settings: Settings to use (default: cached settings)
        sequence: Position of the diagram in its document, mixed into the frame id

    Returns:
        HTML fragment containing the sandbox iframe, or a placeholder for
        unsupported plot diagrams
    """
    settings = settings or get_settings()
    if is_pgfplots(body):
        logger.info("Skipping pgfplots diagram")
        return PGFPLOTS_PLACEHOLDER

    cal = settings.diagram
    layout = plan_layout(body, options, settings)
    safe = to_safe_subset(body, cal)
    diagram_id = hashlib.sha1(f"{sequence}\x00{options}\x00{body}".encode()).hexdigest()[:12]

    document = render_template(
        "diagram_sandbox.html",
        tikzjax_base=TIKZJAX_BASE,
        options=layout.option_string.replace("</", "<\\/"),
        body=safe,
        diagram_id=diagram_id,
        height_padding=cal.frame_height_padding_px,
        min_height=cal.min_frame_height_px,
    )

    logger.debug(
        "Diagram layout planned",
        diagram_id=diagram_id,
        intent=layout.intent.value,
        nodes=layout.signals.node_count,
        hspan=layout.signals.hspan,
        vspan=layout.signals.vspan,
    )

    return (
        '<div class="tikz-wrapper" style="display: flex; justify-content: center; '
        'width: 100%; margin: 1em 0;">'
        f'<iframe sandbox="allow-scripts" data-diagram-id="{diagram_id}" '
        f'srcdoc="{html.escape(document, quote=True)}" '
        f'style="border: none; width: 100%; min-height: {cal.min_frame_height_px}px; '
        'overflow: hidden;"></iframe></div>'
    )
