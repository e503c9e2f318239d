from __future__ import annotations

from zigmirror.common.metrics import Counter, Gauge, Histogram, MetricsRegistry


def test_counter_renders_total():
    counter = Counter("zigmirror_test_total", "Test counter")
    counter.inc()
    counter.inc(2)

    assert counter.value == 3
    assert counter.render() == (
        "# HELP zigmirror_test_total Test counter\n# TYPE zigmirror_test_total counter\nzigmirror_test_total 3.0\n"
    )


def test_gauge_reads_bound_supplier():
    items = [1, 2]
    gauge = Gauge("zigmirror_test_gauge")
    gauge.set(7)
    assert gauge.value == 7

    gauge.bind(lambda: len(items))
    items.append(3)
    assert gauge.value == 3.0

    gauge.bind(None)
    assert gauge.value == 7


def test_histogram_buckets_are_cumulative():
    histogram = Histogram("zigmirror_test_seconds", buckets=[1.0, 0.1])
    for value in (0.05, 0.1, 0.5, 2.0):
        histogram.observe(value)

    rendered = histogram.render()
    assert histogram.count == 4
    assert 'zigmirror_test_seconds_bucket{le="0.1"} 2' in rendered
    assert 'zigmirror_test_seconds_bucket{le="1.0"} 3' in rendered
    assert 'zigmirror_test_seconds_bucket{le="+Inf"} 4' in rendered
    assert "zigmirror_test_seconds_count 4" in rendered


def test_registry_renders_every_metric():
    registry = MetricsRegistry()
    registry.register(Counter("a_total"))
    registry.register(Gauge("b_gauge"))

    rendered = registry.render()
    assert "# TYPE a_total counter" in rendered
    assert "# TYPE b_gauge gauge" in rendered
