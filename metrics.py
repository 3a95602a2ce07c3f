"""
Derived plant metrics: age, current height, harvest estimate, action counts
and watering schedule.

Everything here is pure: callers pass the reference time explicitly and no
function touches the database.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from schemas import (
    Action,
    ActionType,
    DashboardSummary,
    GrowCycleType,
    GrowthMetric,
    Plant,
    PlantStatus,
    PlantSummary,
    UpcomingTask,
)

DAY_SECONDS = 24 * 60 * 60

FLOWERING_DAYS = 63
VEGETATIVE_DAYS = 28
WATERING_INTERVAL_DAYS = 3
RECENT_ACTIONS_WINDOW_DAYS = 7
RECENT_HARVEST_WINDOW_DAYS = 90

SWITCH_TO_FLOWER_MARKER = "switch to flower"


def age_in_days(reference_now: datetime, start_date: datetime) -> int:
    """Whole days since start_date, rounded up. Negative for future dates."""
    delta = reference_now - start_date
    return math.ceil(delta.total_seconds() / DAY_SECONDS)


def sorted_growth_metrics(plant: Plant) -> List[GrowthMetric]:
    return sorted(plant.growth_metrics, key=lambda metric: metric.date)


def current_height(plant: Plant) -> float:
    metrics = sorted_growth_metrics(plant)
    if not metrics:
        return 0
    return metrics[-1].height


def _actions_for(plant: Plant, actions: Iterable[Action]) -> List[Action]:
    return [a for a in actions if a.plant_id == plant.id]


def _flowering_switch(actions: Iterable[Action]) -> Optional[Action]:
    marked = [a for a in actions if a.notes and SWITCH_TO_FLOWER_MARKER in a.notes.lower()]
    if not marked:
        return None
    return max(marked, key=lambda a: a.date)


def estimate_days_to_harvest(
    plant: Plant,
    actions: Iterable[Action],
    reference_now: datetime,
    flowering_days: int = FLOWERING_DAYS,
    vegetative_days: int = VEGETATIVE_DAYS,
) -> Optional[int]:
    """
    Estimate days left until harvest for a flowering plant.

    The flowering start is the most recent action whose notes mention
    "switch to flower"; without one, the plant is assumed to have spent
    vegetative_days in veg since its start date. Returns None for plants
    that are not growing or not flowering.
    """
    if plant.grow_cycle_type != GrowCycleType.FLOWERING or plant.status != PlantStatus.GROWING:
        return None

    switch = _flowering_switch(_actions_for(plant, actions))
    if switch is not None:
        days_in_flowering = age_in_days(reference_now, switch.date)
    else:
        days_in_flowering = max(0, age_in_days(reference_now, plant.start_date) - vegetative_days)

    return max(0, flowering_days - days_in_flowering)


def soonest_harvest(
    plants: Iterable[Plant],
    actions: Sequence[Action],
    reference_now: datetime,
    flowering_days: int = FLOWERING_DAYS,
    vegetative_days: int = VEGETATIVE_DAYS,
) -> Optional[int]:
    estimates = [
        estimate_days_to_harvest(plant, actions, reference_now, flowering_days, vegetative_days)
        for plant in plants
    ]
    estimates = [e for e in estimates if e is not None]
    return min(estimates) if estimates else None


def empty_action_counts() -> Dict[str, int]:
    return {action_type.value: 0 for action_type in ActionType}


def action_counts_by_type(actions: Iterable[Action]) -> Dict[str, int]:
    counts = empty_action_counts()
    for action in actions:
        counts[action.action_type] += 1
    return counts


def recent_actions_within_window(actions: Iterable[Action], reference_now: datetime,
                                 window_days: int = RECENT_ACTIONS_WINDOW_DAYS) -> int:
    cutoff = reference_now - timedelta(days=window_days)
    return sum(1 for action in actions if action.date >= cutoff)


def next_scheduled_watering(
    plant: Plant,
    actions: Iterable[Action],
    reference_now: datetime,
    interval_days: int = WATERING_INTERVAL_DAYS,
) -> Optional[datetime]:
    """Last watering plus interval_days, or None when that is not in the future."""
    waterings = [a for a in _actions_for(plant, actions) if a.action_type == ActionType.WATERING]
    if not waterings:
        return None
    last = max(waterings, key=lambda a: a.date)
    upcoming = last.date + timedelta(days=interval_days)
    if upcoming <= reference_now:
        return None
    return upcoming


def recent_harvests(plants: Iterable[Plant], reference_now: datetime,
                    window_days: int = RECENT_HARVEST_WINDOW_DAYS) -> int:
    cutoff = reference_now - timedelta(days=window_days)
    count = 0
    for plant in plants:
        if plant.status != PlantStatus.HARVESTED:
            continue
        harvested_on = plant.harvest_date or plant.updated_at
        if harvested_on >= cutoff:
            count += 1
    return count


def upcoming_tasks(
    plants: Iterable[Plant],
    actions: Sequence[Action],
    reference_now: datetime,
    interval_days: int = WATERING_INTERVAL_DAYS,
) -> List[UpcomingTask]:
    tasks = []
    for plant in plants:
        if plant.status != PlantStatus.GROWING:
            continue
        due = next_scheduled_watering(plant, actions, reference_now, interval_days)
        if due is None:
            continue
        tasks.append(UpcomingTask(
            id=f"watering-{plant.id}",
            type=ActionType.WATERING,
            plant_id=plant.id,
            plant_name=plant.name,
            date=due,
        ))
    tasks.sort(key=lambda task: task.date)
    return tasks


def dashboard_summary(plants: Sequence[Plant], actions: Sequence[Action], reference_now: datetime,
                      settings=None) -> DashboardSummary:
    flowering_days = settings.flowering_days if settings else FLOWERING_DAYS
    vegetative_days = settings.vegetative_days if settings else VEGETATIVE_DAYS
    interval_days = settings.watering_interval_days if settings else WATERING_INTERVAL_DAYS

    active = [p for p in plants if p.status == PlantStatus.GROWING]
    return DashboardSummary(
        active_plants=len(active),
        recent_harvests=recent_harvests(plants, reference_now),
        days_to_harvest=soonest_harvest(active, actions, reference_now, flowering_days, vegetative_days),
        recent_actions=recent_actions_within_window(actions, reference_now),
        upcoming_tasks=upcoming_tasks(active, actions, reference_now, interval_days),
    )


def plant_summary(plant: Plant, actions: Sequence[Action], reference_now: datetime,
                  settings=None) -> PlantSummary:
    flowering_days = settings.flowering_days if settings else FLOWERING_DAYS
    vegetative_days = settings.vegetative_days if settings else VEGETATIVE_DAYS
    interval_days = settings.watering_interval_days if settings else WATERING_INTERVAL_DAYS

    own = _actions_for(plant, actions)
    return PlantSummary(
        plant_id=plant.id,
        age_in_days=age_in_days(reference_now, plant.start_date),
        current_height=current_height(plant),
        action_counts=action_counts_by_type(own),
        days_to_harvest=estimate_days_to_harvest(plant, own, reference_now, flowering_days, vegetative_days),
        next_watering=next_scheduled_watering(plant, own, reference_now, interval_days),
    )
