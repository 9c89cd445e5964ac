"""Run KPIs and the delivery-mode induction invariant."""

from __future__ import annotations

import pytest

from ralph_orchestrator.control_plane.kpis import compute_run_kpis, validate_induction_invariant
from ralph_orchestrator.security.policy import PolicyMode


def _kpis(**overrides: object):  # type: ignore[no-untyped-def]
    values: dict[str, object] = {
        "tasks_processed": 10,
        "tasks_completed": 9,
        "task_durations_seconds": [30.0, 90.0],
        "rollback_count": 1,
        "escaped_defects": 0,
        "human_interventions": 0,
        "max_time_per_task_seconds": 1800.0,
    }
    values.update(overrides)
    return compute_run_kpis(**values)  # type: ignore[arg-type]


@pytest.mark.unit
def test_compute_run_kpis() -> None:
    kpis = _kpis()

    assert kpis.success_rate == 0.9
    assert kpis.avg_cycle_time_seconds == 60.0
    assert kpis.rollback_rate == 0.1
    assert kpis.to_dict()["tasksProcessed"] == 10


@pytest.mark.unit
def test_empty_run_has_zero_rates() -> None:
    kpis = _kpis(tasks_processed=0, tasks_completed=0, task_durations_seconds=[], rollback_count=0)

    assert kpis.success_rate == 0.0
    assert kpis.avg_cycle_time_seconds == 0.0
    assert validate_induction_invariant(kpis).passed


@pytest.mark.unit
def test_delivery_invariant_reports_each_threshold() -> None:
    kpis = _kpis(
        tasks_completed=5,
        task_durations_seconds=[4000.0],
        rollback_count=4,
        escaped_defects=2,
        human_interventions=3,
    )

    report = validate_induction_invariant(kpis, PolicyMode.DELIVERY)

    assert not report.passed
    assert report.enforced
    assert [item.split(":", 1)[0] for item in report.violations] == [
        "success_rate_below_threshold",
        "cycle_time_exceeds_limit",
        "escaped_defects_nonzero",
        "rollback_rate_above_threshold",
        "human_interventions_above_threshold",
    ]


@pytest.mark.unit
def test_core_mode_records_without_enforcing() -> None:
    report = validate_induction_invariant(_kpis(tasks_completed=0), PolicyMode.CORE)

    assert report.passed
    assert not report.enforced
    assert report.violations == ()
