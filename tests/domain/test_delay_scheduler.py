from datetime import datetime, timedelta, timezone

from crm_workflows.domain.workflow.value_objects.delay import DelayScheduler
from crm_workflows.domain.workflow.value_objects.nodes import DelayNode

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_delay_adds_all_units():
    node = DelayNode(id="wait", delay_minutes=30, delay_hours=1, delay_days=1)

    assert DelayScheduler.compute_wait(node, NOW) == NOW + timedelta(days=1, hours=1, minutes=30)


def test_one_day_delay_is_twenty_four_hours():
    assert DelayScheduler.compute_wait(DelayNode(id="wait", delay_days=1), NOW) == NOW + timedelta(hours=24)


def test_zero_delay_still_returns_a_wake_time():
    assert DelayScheduler.compute_wait(DelayNode(id="wait"), NOW) == NOW
