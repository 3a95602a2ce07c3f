"""
Database Schemas for the Grow Tracker

Each record type is a Pydantic model backed by a MongoDB collection:
Plant -> "plants", Action -> "actions", Image -> "images". Python attributes
are snake_case; JSON bodies and stored documents use the camelCase aliases.
All datetimes are naive UTC with millisecond precision, matching what MongoDB
stores.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return truncate_to_millis(value)


def utc_now() -> datetime:
    return to_naive_utc(datetime.now(timezone.utc))


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class PlantStatus(str, Enum):
    GROWING = "Growing"
    HARVESTED = "Harvested"
    ARCHIVED = "Archived"


class GrowCycleType(str, Enum):
    VEGETATIVE = "Vegetative"
    FLOWERING = "Flowering"


class ActionType(str, Enum):
    WATERING = "Watering"
    FEEDING = "Feeding"
    PRUNING = "Pruning"
    TRAINING = "Training"
    TRANSPLANTING = "Transplanting"
    OTHER = "Other"


class EntityType(str, Enum):
    PLANT = "Plant"
    ACTION = "Action"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_document(self, **kwargs) -> Dict[str, Any]:
        """Dump with stored (camelCase) field names."""
        return self.model_dump(by_alias=True, **kwargs)


class UpdateModel(CamelModel):
    """Partial update body: unknown keys (including id) are rejected."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="forbid",
    )

    def to_update_fields(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


# ---------------- Plants ----------------

class GrowthMetric(CamelModel):
    """Height measurement attached to a plant"""
    date: UtcDatetime = Field(default_factory=utc_now, description="Measurement date")
    height: float = Field(..., ge=0, strict=True, description="Height in centimeters")
    notes: Optional[str] = Field(None, description="Notes about this measurement")

    @field_validator("date", mode="before")
    @classmethod
    def _default_date(cls, value):
        return utc_now() if value is None else value


class PlantCreate(CamelModel):
    """Cultivated plant profile
    Collection: plants
    """
    name: str = Field(..., min_length=1, description="Plant name, unique across plants")
    strain: str = Field(..., min_length=1, description="Strain name")
    status: PlantStatus = Field(..., description="Growing, Harvested or Archived")
    grow_cycle_type: GrowCycleType = Field(..., description="Vegetative or Flowering")
    start_date: UtcDatetime = Field(default_factory=utc_now, description="Date the grow started")
    harvest_date: Optional[UtcDatetime] = Field(None, description="Set when harvested")
    notes: Optional[str] = None
    growth_metrics: List[GrowthMetric] = Field(default_factory=list)
    cover_image_id: Optional[str] = None

    @field_validator("name", "strain")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("start_date", mode="before")
    @classmethod
    def _default_start(cls, value):
        return utc_now() if value is None else value

    @model_validator(mode="after")
    def _harvest_after_start(self):
        if self.harvest_date is not None and self.harvest_date < self.start_date:
            raise ValueError("harvestDate must not be before startDate")
        return self


class Plant(PlantCreate):
    id: str
    created_at: datetime
    updated_at: datetime


class PlantUpdate(UpdateModel):
    name: Optional[str] = Field(None, min_length=1)
    strain: Optional[str] = Field(None, min_length=1)
    status: Optional[PlantStatus] = None
    grow_cycle_type: Optional[GrowCycleType] = None
    start_date: Optional[UtcDatetime] = None
    harvest_date: Optional[UtcDatetime] = None
    notes: Optional[str] = None
    growth_metrics: Optional[List[GrowthMetric]] = None
    cover_image_id: Optional[str] = None

    @field_validator("name", "strain", "status", "grow_cycle_type", "start_date", "growth_metrics",
                     mode="before")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    @field_validator("name", "strain")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class HarvestRequest(CamelModel):
    harvest_date: Optional[UtcDatetime] = None


# ---------------- Actions ----------------

class Nutrient(CamelModel):
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., ge=0)
    unit: str = Field(..., min_length=1)


class ActionDetails(BaseModel):
    """Open-ended payload; only the nutrient list of a feeding is checked."""
    model_config = ConfigDict(extra="allow")

    nutrients: Optional[List[Nutrient]] = None


class ActionCreate(CamelModel):
    """Logged activity on a plant
    Collection: actions
    """
    plant_id: str = Field(..., description="Referenced Plant id")
    action_type: ActionType
    date: UtcDatetime = Field(..., description="When the action happened")
    details: ActionDetails = Field(default_factory=ActionDetails)
    notes: Optional[str] = None
    image_ids: List[str] = Field(default_factory=list)

    @field_validator("plant_id")
    @classmethod
    def _plant_id_format(cls, value: str) -> str:
        if not is_object_id(value):
            raise ValueError("Invalid plantId format")
        return value

    @field_validator("details", mode="before")
    @classmethod
    def _default_details(cls, value):
        return {} if value is None else value

    @field_validator("image_ids", mode="before")
    @classmethod
    def _unique_image_ids(cls, value):
        if value is None:
            return []
        return list(dict.fromkeys(value))


class Action(ActionCreate):
    id: str
    created_at: datetime
    updated_at: datetime


class ActionUpdate(UpdateModel):
    plant_id: Optional[str] = None
    action_type: Optional[ActionType] = None
    date: Optional[UtcDatetime] = None
    details: Optional[ActionDetails] = None
    notes: Optional[str] = None
    image_ids: Optional[List[str]] = None

    @field_validator("plant_id", "action_type", "date", mode="before")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    @field_validator("plant_id")
    @classmethod
    def _plant_id_format(cls, value: str) -> str:
        if not is_object_id(value):
            raise ValueError("Invalid plantId format")
        return value

    @field_validator("image_ids", mode="before")
    @classmethod
    def _unique_image_ids(cls, value):
        if value is None:
            return []
        return list(dict.fromkeys(value))


# ---------------- Images ----------------

class PlantRef(CamelModel):
    entity_type: Literal["Plant"] = "Plant"
    entity_id: str


class ActionRef(CamelModel):
    entity_type: Literal["Action"] = "Action"
    entity_id: str


EntityRef = Annotated[Union[PlantRef, ActionRef], Field(discriminator="entity_type")]
_entity_ref_adapter = TypeAdapter(EntityRef)


class Image(CamelModel):
    """Stored photo metadata
    Collection: images
    """
    id: str
    storage_key: str = Field(..., description="Object key in the blob store")
    filename: str
    content_type: str
    size: int = Field(..., ge=0, description="Size in bytes")
    entity_type: EntityType
    entity_id: str
    upload_date: datetime


class ImageWithUrl(Image):
    url: Optional[str] = None


def make_entity_ref(entity_type: str, entity_id: str) -> Union[PlantRef, ActionRef]:
    return _entity_ref_adapter.validate_python({"entityType": entity_type, "entityId": entity_id})


# ---------------- Stats ----------------

class UpcomingTask(CamelModel):
    id: str
    type: ActionType
    plant_id: str
    plant_name: str
    date: datetime


class DashboardSummary(CamelModel):
    active_plants: int
    recent_harvests: int
    days_to_harvest: Optional[int]
    recent_actions: int
    upcoming_tasks: List[UpcomingTask]


class PlantSummary(CamelModel):
    plant_id: str
    age_in_days: int
    current_height: float
    action_counts: Dict[str, int]
    days_to_harvest: Optional[int]
    next_watering: Optional[datetime]


# ---------------- Validation ----------------

def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def _validate(model, data, what: str):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e), operation=f"validate {what}") from e


def validate_plant(data: Dict[str, Any]) -> PlantCreate:
    return _validate(PlantCreate, data, "plant")


def validate_plant_update(data: Dict[str, Any]) -> PlantUpdate:
    return _validate(PlantUpdate, data, "plant update")


def validate_action(data: Dict[str, Any]) -> ActionCreate:
    return _validate(ActionCreate, data, "action")


def validate_action_update(data: Dict[str, Any]) -> ActionUpdate:
    return _validate(ActionUpdate, data, "action update")


def validate_growth_metric(data: Dict[str, Any]) -> GrowthMetric:
    if not isinstance(data, dict) or "height" not in data:
        raise ValidationError("Valid height is required as a number", operation="validate growth metric")
    return _validate(GrowthMetric, data, "growth metric")


def validate_entity_ref(entity_type: Optional[str], entity_id: Optional[str]) -> Union[PlantRef, ActionRef]:
    if not entity_type or not entity_id:
        raise ValidationError("Missing entityType or entityId", operation="validate entity")
    if entity_type not in {e.value for e in EntityType}:
        raise ValidationError("Invalid entityType. Must be Plant or Action", operation="validate entity")
    if not is_object_id(entity_id):
        raise ValidationError("Invalid entityId format", operation="validate entity")
    return make_entity_ref(entity_type, entity_id)


def validate_image_upload(entity_type: Optional[str], entity_id: Optional[str],
                          filename: Optional[str]) -> Union[PlantRef, ActionRef]:
    """Check an upload's form fields before anything touches the blob store."""
    if not filename:
        raise ValidationError("No file uploaded", operation="validate upload")
    return validate_entity_ref(entity_type, entity_id)
