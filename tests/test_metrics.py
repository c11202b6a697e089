"""Tests for the metrics registry."""

from texpreview.utils.metrics import (
    MetricsRegistry,
    get_metrics,
    record_extraction,
    record_layout_shrink,
    record_preview_render,
)


class TestMetricsRegistry:
    """Tests for MetricsRegistry."""

    def test_counter_with_labels(self) -> None:
        """Test counters accumulate per label set."""
        registry = MetricsRegistry()
        registry.counter("hits", labels={"kind": "a"})
        registry.counter("hits", 2.0, labels={"kind": "a"})
        registry.counter("hits", labels={"kind": "b"})
        assert registry.get_counter("hits", {"kind": "a"}) == 3.0
        assert registry.get_counter("hits", {"kind": "b"}) == 1.0
        assert registry.get_counter("misses") == 0.0

    def test_prometheus_format(self) -> None:
        """Test the text export lists counters, histograms and gauges."""
        registry = MetricsRegistry()
        registry.counter("hits", labels={"b": "2", "a": "1"})
        registry.histogram("latency", 5.0)
        registry.gauge("depth", 3.0)
        assert registry.to_prometheus_format().splitlines() == [
            'hits{a="1",b="2"} 1.0',
            "latency_sum 5.0",
            "latency_count 1",
            "depth 3.0",
        ]

    def test_histogram_summary(self) -> None:
        """Test the dict export derives max and average."""
        registry = MetricsRegistry()
        registry.histogram("latency", 2.0)
        registry.histogram("latency", 6.0)
        (entry,) = registry.to_dict()["histograms"]
        assert entry["max"] == 6.0
        assert entry["avg"] == 4.0

    def test_reset(self) -> None:
        """Test reset empties every family."""
        registry = MetricsRegistry()
        registry.counter("hits")
        registry.reset()
        assert registry.to_dict() == {"counters": [], "histograms": [], "gauges": []}


class TestRecorders:
    """Tests for the domain recording helpers."""

    def test_record_preview_render(self) -> None:
        """Test renders count by status and record block counts."""
        record_preview_render("success", 12.0, blocks=4)
        data = get_metrics().to_dict()
        names = {h["name"] for h in data["histograms"]}
        assert get_metrics().get_counter("preview_renders_total", {"status": "success"}) == 1.0
        assert names == {"preview_render_duration_ms", "preview_blocks_per_document"}

    def test_record_extraction_skips_zero(self) -> None:
        """Test empty extractions are not recorded."""
        record_extraction("table", 0)
        record_extraction("math", 3)
        assert get_metrics().get_counter("preview_blocks_extracted_total", {"kind": "table"}) == 0.0
        assert get_metrics().get_counter("preview_blocks_extracted_total", {"kind": "math"}) == 3.0

    def test_record_layout_shrink(self) -> None:
        """Test shrinks are counted per target."""
        record_layout_shrink("table-wrapper", 0.7)
        assert get_metrics().get_counter("preview_layout_shrinks_total", {"target": "table-wrapper"}) == 1.0
