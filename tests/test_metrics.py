from __future__ import annotations

import pytest

from tokenfarm.runtime import metrics


def test_labeled_counters_are_separate_series() -> None:
    metrics.inc_counter("tx_applied_total", op="deposit")
    metrics.inc_counter("tx_applied_total", op="deposit")
    metrics.inc_counter("tx_applied_total", op="harvest")
    assert metrics.counter_value("tx_applied_total", op="deposit") == 2
    assert metrics.counter_value("tx_applied_total", op="harvest") == 1
    assert metrics.counter_value("tx_applied_total") == 0


def test_exposition_has_help_type_and_sorted_labels() -> None:
    metrics.inc_counter("tx_rejected_total", reason="zero_amount", op="deposit")
    metrics.set_gauge("total_staked", 300)
    lines = metrics.format_prometheus().splitlines()

    assert "# TYPE tokenfarm_tx_rejected_total counter" in lines
    assert 'tokenfarm_tx_rejected_total{op="deposit",reason="zero_amount"} 1' in lines
    assert "# TYPE tokenfarm_total_staked gauge" in lines
    assert "tokenfarm_total_staked 300" in lines
    assert lines[1].startswith("tokenfarm_uptime_ms ")


def test_label_values_are_escaped() -> None:
    metrics.inc_counter("farm_events_total", event='odd"name')
    assert 'tokenfarm_farm_events_total{event="odd\\"name"} 1' in metrics.format_prometheus().splitlines()


def test_unknown_families_are_exported_untyped() -> None:
    metrics.inc_counter("custom_total")
    text = metrics.format_prometheus()
    assert "tokenfarm_custom_total 1" in text
    assert "# TYPE tokenfarm_custom_total" not in text


@pytest.mark.parametrize("raw,expected", [("1", True), ("on", True), ("", False), ("0", False)])
def test_metrics_enabled_flag(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("TOKENFARM_METRICS_ENABLED", raw)
    assert metrics.metrics_enabled() is expected
