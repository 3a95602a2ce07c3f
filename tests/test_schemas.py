"""
Unit tests for input validation of plants, actions, growth metrics and uploads.
"""

from datetime import datetime

import pytest
from bson import ObjectId

from errors import ValidationError
from schemas import (
    ActionRef,
    PlantRef,
    validate_action,
    validate_action_update,
    validate_growth_metric,
    validate_image_upload,
    validate_plant,
    validate_plant_update,
)

pytestmark = pytest.mark.unit

PLANT_ID = str(ObjectId())


def plant_body(**overrides):
    body = {"name": "Blue Dream", "strain": "Blue Dream", "status": "Growing", "growCycleType": "Vegetative"}
    body.update(overrides)
    return body


class TestValidatePlant:
    def test_minimal_plant_defaults(self):
        plant = validate_plant(plant_body())

        assert plant.status == "Growing"
        assert plant.growth_metrics == []
        assert isinstance(plant.start_date, datetime)
        assert plant.start_date.microsecond % 1000 == 0

    @pytest.mark.parametrize("missing", ["name", "strain", "status", "growCycleType"])
    def test_required_fields(self, missing):
        body = plant_body()
        del body[missing]

        with pytest.raises(ValidationError):
            validate_plant(body)

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            validate_plant(plant_body(name="   "))

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_plant(plant_body(status="Dead"))
        assert "status" in exc.value.message

    def test_timezone_aware_dates_become_naive_utc(self):
        plant = validate_plant(plant_body(startDate="2025-01-10T12:00:00+02:00"))
        assert plant.start_date == datetime(2025, 1, 10, 10, 0, 0)

    def test_harvest_before_start_rejected(self):
        with pytest.raises(ValidationError):
            validate_plant(plant_body(startDate="2025-02-01T00:00:00", harvestDate="2025-01-01T00:00:00"))

    def test_update_rejects_id(self):
        with pytest.raises(ValidationError):
            validate_plant_update({"id": PLANT_ID, "notes": "x"})

    def test_update_rejects_null_required_field(self):
        with pytest.raises(ValidationError):
            validate_plant_update({"name": None})

    def test_update_keeps_only_supplied_fields(self):
        update = validate_plant_update({"status": "Harvested", "notes": None})
        assert update.to_update_fields() == {"status": "Harvested", "notes": None}


class TestValidateAction:
    def test_feeding_with_nutrients(self):
        action = validate_action({
            "plantId": PLANT_ID,
            "actionType": "Feeding",
            "date": "2025-02-01T08:30:00Z",
            "details": {"nutrients": [{"name": "Grow A", "quantity": 2.5, "unit": "ml/L"}], "ph": 6.2},
        })

        assert action.details.nutrients[0].unit == "ml/L"
        assert action.details.model_extra == {"ph": 6.2}

    def test_malformed_nutrient_rejected(self):
        with pytest.raises(ValidationError):
            validate_action({
                "plantId": PLANT_ID,
                "actionType": "Feeding",
                "date": "2025-02-01T08:30:00",
                "details": {"nutrients": [{"name": "Grow A"}]},
            })

    @pytest.mark.parametrize("missing", ["plantId", "actionType", "date"])
    def test_required_fields(self, missing):
        body = {"plantId": PLANT_ID, "actionType": "Watering", "date": "2025-02-01T08:30:00"}
        del body[missing]

        with pytest.raises(ValidationError):
            validate_action(body)

    def test_unparseable_date(self):
        with pytest.raises(ValidationError):
            validate_action({"plantId": PLANT_ID, "actionType": "Watering", "date": "last tuesday"})

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            validate_action({"plantId": PLANT_ID, "actionType": "Singing", "date": "2025-02-01T08:30:00"})

    def test_malformed_plant_id(self):
        with pytest.raises(ValidationError) as exc:
            validate_action({"plantId": "abc", "actionType": "Watering", "date": "2025-02-01T08:30:00"})
        assert "plantId" in exc.value.message

    def test_duplicate_image_ids_collapse(self):
        action = validate_action({
            "plantId": PLANT_ID, "actionType": "Watering", "date": "2025-02-01T08:30:00",
            "imageIds": ["a", "b", "a"],
        })
        assert action.image_ids == ["a", "b"]

    def test_update_rejects_underscore_id(self):
        with pytest.raises(ValidationError):
            validate_action_update({"_id": PLANT_ID})


class TestValidateGrowthMetric:
    def test_valid_metric_defaults_date(self):
        metric = validate_growth_metric({"height": 42.5})
        assert metric.height == 42.5
        assert metric.date is not None

    def test_missing_height(self):
        with pytest.raises(ValidationError) as exc:
            validate_growth_metric({"notes": "tall"})
        assert exc.value.message == "Valid height is required as a number"

    @pytest.mark.parametrize("height", ["12", "tall", None, -1.0])
    def test_non_numeric_or_negative_height(self, height):
        with pytest.raises(ValidationError):
            validate_growth_metric({"height": height})


class TestValidateImageUpload:
    def test_plant_reference(self):
        ref = validate_image_upload("Plant", PLANT_ID, "photo.png")
        assert isinstance(ref, PlantRef)
        assert ref.entity_id == PLANT_ID

    def test_action_reference(self):
        assert isinstance(validate_image_upload("Action", PLANT_ID, "photo.png"), ActionRef)

    def test_unknown_entity_type(self):
        with pytest.raises(ValidationError) as exc:
            validate_image_upload("Comment", PLANT_ID, "photo.png")
        assert exc.value.message == "Invalid entityType. Must be Plant or Action"

    def test_missing_file(self):
        with pytest.raises(ValidationError):
            validate_image_upload("Plant", PLANT_ID, None)

    def test_missing_entity_id(self):
        with pytest.raises(ValidationError):
            validate_image_upload("Plant", "", "photo.png")
