from datetime import datetime, timedelta

from bson import ObjectId

from schemas import Action, GrowthMetric, Plant

NOW = datetime(2025, 3, 1, 12, 0, 0)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def make_plant(**overrides) -> Plant:
    data = {
        "id": str(ObjectId()),
        "name": "Northern Lights",
        "strain": "Northern Lights Auto",
        "status": "Growing",
        "grow_cycle_type": "Flowering",
        "start_date": days_ago(28),
        "created_at": days_ago(28),
        "updated_at": days_ago(1),
    }
    data.update(overrides)
    return Plant(**data)


def make_action(plant: Plant, action_type: str = "Watering", date: datetime = None, **overrides) -> Action:
    data = {
        "id": str(ObjectId()),
        "plant_id": plant.id,
        "action_type": action_type,
        "date": date or NOW,
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return Action(**data)


def metric(days: float, height: float) -> GrowthMetric:
    return GrowthMetric(date=days_ago(days), height=height)


def bucket_keys(store) -> list:
    response = store.client.list_objects_v2(Bucket=store.bucket)
    return [item["Key"] for item in response.get("Contents", [])]
