"""
Unit tests for metrics: age, height, harvest estimate, counts, watering.
"""

from datetime import timedelta

import pytest

from config import Settings
from factories import NOW, days_ago, make_action, make_plant, metric
from metrics import (
    action_counts_by_type,
    age_in_days,
    current_height,
    dashboard_summary,
    estimate_days_to_harvest,
    next_scheduled_watering,
    plant_summary,
    recent_actions_within_window,
    recent_harvests,
    soonest_harvest,
    sorted_growth_metrics,
    upcoming_tasks,
)

pytestmark = pytest.mark.unit


class TestAgeInDays:
    def test_same_instant_is_zero(self):
        assert age_in_days(NOW, NOW) == 0

    def test_whole_days(self):
        assert age_in_days(NOW, days_ago(10)) == 10

    def test_partial_day_rounds_up(self):
        assert age_in_days(NOW, NOW - timedelta(hours=1)) == 1

    def test_future_start_is_negative(self):
        assert age_in_days(NOW, NOW + timedelta(days=2)) == -2


class TestCurrentHeight:
    def test_empty_metrics_is_zero(self):
        assert current_height(make_plant()) == 0

    def test_uses_latest_by_date_not_insertion_order(self):
        plant = make_plant(growth_metrics=[metric(1, 30.0), metric(10, 12.5), metric(5, 20.0)])

        assert current_height(plant) == 30.0
        assert [m.height for m in sorted_growth_metrics(plant)] == [12.5, 20.0, 30.0]


class TestEstimateDaysToHarvest:
    def test_vegetative_plant_has_no_estimate(self):
        plant = make_plant(grow_cycle_type="Vegetative")
        assert estimate_days_to_harvest(plant, [], NOW) is None

    def test_harvested_plant_has_no_estimate(self):
        plant = make_plant(status="Harvested", harvest_date=days_ago(1))
        assert estimate_days_to_harvest(plant, [], NOW) is None

    def test_four_weeks_old_without_switch_has_full_flowering_left(self):
        plant = make_plant(start_date=days_ago(28))
        assert estimate_days_to_harvest(plant, [], NOW) == 63

    def test_young_plant_never_exceeds_full_flowering(self):
        plant = make_plant(start_date=days_ago(3))
        assert estimate_days_to_harvest(plant, [], NOW) == 63

    def test_switch_action_long_ago_clamps_at_zero(self):
        plant = make_plant()
        switch = make_action(plant, "Other", date=days_ago(70), notes="Switch to flower today")

        assert estimate_days_to_harvest(plant, [switch], NOW) == 0

    def test_switch_action_is_case_insensitive(self):
        plant = make_plant(start_date=days_ago(100))
        switch = make_action(plant, "Training", date=days_ago(10), notes="lights 12/12, SWITCH TO FLOWERING")

        assert estimate_days_to_harvest(plant, [switch], NOW) == 53

    def test_most_recent_switch_wins(self):
        plant = make_plant()
        older = make_action(plant, "Other", date=days_ago(40), notes="switch to flower")
        newer = make_action(plant, "Other", date=days_ago(20), notes="switch to flower again")

        assert estimate_days_to_harvest(plant, [older, newer], NOW) == 43

    def test_other_plants_actions_are_ignored(self):
        plant = make_plant(start_date=days_ago(28))
        other = make_plant(name="Other")
        switch = make_action(other, "Other", date=days_ago(60), notes="switch to flower")

        assert estimate_days_to_harvest(plant, [switch], NOW) == 63

    def test_custom_periods(self):
        plant = make_plant(start_date=days_ago(40))
        assert estimate_days_to_harvest(plant, [], NOW, flowering_days=56, vegetative_days=30) == 46


class TestSoonestHarvest:
    def test_minimum_over_flowering_plants(self):
        early = make_plant(name="A", start_date=days_ago(80))
        late = make_plant(name="B", start_date=days_ago(30))
        veg = make_plant(name="C", grow_cycle_type="Vegetative")

        assert soonest_harvest([early, late, veg], [], NOW) == 11

    def test_no_flowering_plants(self):
        assert soonest_harvest([make_plant(grow_cycle_type="Vegetative")], [], NOW) is None
        assert soonest_harvest([], [], NOW) is None


class TestActionCounts:
    def test_zero_filled(self):
        plant = make_plant()
        actions = [make_action(plant, "Watering"), make_action(plant, "Watering")]

        assert action_counts_by_type(actions) == {
            "Watering": 2,
            "Feeding": 0,
            "Pruning": 0,
            "Training": 0,
            "Transplanting": 0,
            "Other": 0,
        }

    def test_recent_window(self):
        plant = make_plant()
        actions = [
            make_action(plant, date=days_ago(1)),
            make_action(plant, date=days_ago(7)),
            make_action(plant, date=days_ago(8)),
        ]

        assert recent_actions_within_window(actions, NOW) == 2
        assert recent_actions_within_window(actions, NOW, window_days=30) == 3


class TestNextScheduledWatering:
    def test_no_watering_yet(self):
        plant = make_plant()
        assert next_scheduled_watering(plant, [make_action(plant, "Feeding")], NOW) is None

    def test_interval_after_latest_watering(self):
        plant = make_plant()
        actions = [make_action(plant, date=days_ago(5)), make_action(plant, date=days_ago(1))]

        assert next_scheduled_watering(plant, actions, NOW) == days_ago(1) + timedelta(days=3)

    def test_overdue_watering_is_not_scheduled(self):
        plant = make_plant()
        assert next_scheduled_watering(plant, [make_action(plant, date=days_ago(4))], NOW) is None

    def test_custom_interval(self):
        plant = make_plant()
        actions = [make_action(plant, date=days_ago(4))]

        assert next_scheduled_watering(plant, actions, NOW, interval_days=7) == days_ago(4) + timedelta(days=7)


class TestDashboard:
    def test_recent_harvests_uses_harvest_date_then_updated_at(self):
        plants = [
            make_plant(name="A", status="Harvested", harvest_date=days_ago(10)),
            make_plant(name="B", status="Harvested", start_date=days_ago(200), harvest_date=days_ago(120)),
            make_plant(name="C", status="Harvested", updated_at=days_ago(5)),
            make_plant(name="D"),
        ]

        assert recent_harvests(plants, NOW) == 2

    def test_upcoming_tasks_sorted_by_date(self):
        first = make_plant(name="First")
        second = make_plant(name="Second")
        actions = [make_action(second, date=days_ago(0.5)), make_action(first, date=days_ago(2))]

        tasks = upcoming_tasks([second, first], actions, NOW)

        assert [t.plant_name for t in tasks] == ["First", "Second"]
        assert tasks[0].id == f"watering-{first.id}"

    def test_summary(self):
        growing = make_plant(name="A", start_date=days_ago(50))
        harvested = make_plant(name="B", status="Harvested", harvest_date=days_ago(3))
        actions = [make_action(growing, date=days_ago(1)), make_action(growing, "Pruning", date=days_ago(20))]

        summary = dashboard_summary([growing, harvested], actions, NOW, Settings())

        assert summary.active_plants == 1
        assert summary.recent_harvests == 1
        assert summary.days_to_harvest == 41
        assert summary.recent_actions == 1
        assert len(summary.upcoming_tasks) == 1

    def test_plant_summary(self):
        plant = make_plant(start_date=days_ago(10), grow_cycle_type="Vegetative",
                           growth_metrics=[metric(2, 14.0), metric(8, 4.0)])
        actions = [make_action(plant, date=days_ago(1)), make_action(plant, "Feeding", date=days_ago(2))]

        summary = plant_summary(plant, actions, NOW)

        assert summary.age_in_days == 10
        assert summary.current_height == 14.0
        assert summary.action_counts["Watering"] == 1
        assert summary.action_counts["Feeding"] == 1
        assert summary.days_to_harvest is None
        assert summary.next_watering == days_ago(1) + timedelta(days=3)
