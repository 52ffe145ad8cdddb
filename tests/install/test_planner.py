import dataclasses

import pytest

from lnfleet.install.planner import CyclicDependencyError, dependencies, plan
from lnfleet.observers.dispatcher import EventBus
from lnfleet.observers.events import PlanComputed, PlanFailed


def test_plan_puts_bootstrap_database_first_and_emits_event(fleet, capture):
    ordered = plan(fleet, bus=EventBus([capture]))
    assert [h.name for h in ordered] == ["db-00", "kld-00", "db-01"]
    pc = next(e for e in capture.events if isinstance(e, PlanComputed))
    assert pc.order == ["db-00", "kld-00", "db-01"]


def test_untargeted_bootstrap_host_is_not_a_dependency(fleet):
    kld, _, db1 = fleet
    assert dependencies(db1, {"db-01", "kld-00"}) == set()
    assert dependencies(kld, {"db-00", "kld-00"}) == {"db-00"}
    assert [h.name for h in plan([db1, kld])] == ["db-01", "kld-00"]


def test_plan_cycle_detected_and_emits_failure(fleet, capture):
    kld, db0, db1 = fleet
    looped = [dataclasses.replace(db0, bootstrap_host="db-01"), db1]
    with pytest.raises(CyclicDependencyError):
        plan(looped, bus=EventBus([capture]))
    pf = next(e for e in capture.events if isinstance(e, PlanFailed))
    assert "cyclic" in pf.error
