"""
MongoDB access for plants, actions and images.

One MongoClient (and its connection pool) is created per process and shared
by reference; each collection gets a small store object that translates
between stored documents and the Pydantic models in schemas.py.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import DuplicateError, InvalidIdError, PersistenceError, ValidationError
from logger import db_logger
from metrics import empty_action_counts
from schemas import (
    Action,
    ActionCreate,
    ActionRef,
    ActionUpdate,
    GrowthMetric,
    Image,
    Plant,
    PlantCreate,
    PlantRef,
    PlantStatus,
    PlantUpdate,
    utc_now,
)

PLANTS = "plants"
ACTIONS = "actions"
IMAGES = "images"

DEFAULT_ACTION_LIMIT = 10


# Helpers
def to_str_id(doc: dict):
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
    return d


def to_object_id(value: str, operation: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise InvalidIdError(f"Invalid id: {value}", operation=operation, entity_id=str(value)) from e


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Current time, nudged past previous so updatedAt always moves forward."""
    now = utc_now()
    if previous is not None and now <= previous:
        now = previous + timedelta(milliseconds=1)
    return now


@contextmanager
def translate_errors(operation: str, entity_id: Optional[str] = None,
                     duplicate_message: str = "Duplicate value for a unique field"):
    try:
        yield
    except DuplicateKeyError as e:
        db_logger.warning(f"DUPLICATE in {operation} (id={entity_id}): {e}")
        raise DuplicateError(duplicate_message, operation=operation, entity_id=entity_id) from e
    except PyMongoError as e:
        db_logger.error(f"DB ERROR in {operation} (id={entity_id}): {type(e).__name__}: {e}")
        raise PersistenceError(f"Failed to {operation}", operation=operation, entity_id=entity_id) from e


def create_document(collection, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert data stamped with createdAt/updatedAt; returns the stored document."""
    now = utc_now()
    document = dict(data)
    document["createdAt"] = now
    document["updatedAt"] = now
    result = collection.insert_one(document)
    document["_id"] = result.inserted_id
    return document


def get_documents(collection, filter_dict: dict = None, sort: list = None, limit: int = None) -> List[dict]:
    cursor = collection.find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def split_update(fields: Dict[str, Any]):
    """Separate a partial update into $set and $unset parts (None clears a field)."""
    to_set = {k: v for k, v in fields.items() if v is not None}
    to_unset = {k: "" for k, v in fields.items() if v is None}
    return to_set, to_unset


class DocumentStore:
    entity_name = "document"
    model = None

    def __init__(self, collection):
        self.collection = collection

    def _to_model(self, doc):
        if doc is None:
            return None
        return self.model.model_validate(to_str_id(doc))

    def get_by_id(self, entity_id: str):
        operation = f"fetch {self.entity_name}"
        oid = to_object_id(entity_id, operation)
        with translate_errors(operation, entity_id):
            doc = self.collection.find_one({"_id": oid})
        return self._to_model(doc)

    def delete(self, entity_id: str) -> Optional[str]:
        operation = f"delete {self.entity_name}"
        oid = to_object_id(entity_id, operation)
        with translate_errors(operation, entity_id):
            result = self.collection.delete_one({"_id": oid})
        if result.deleted_count != 1:
            return None
        db_logger.warning(f"DELETE {self.entity_name} (id={entity_id})")
        return entity_id

    def _prepare_update(self, prior: dict, fields: Dict[str, Any]) -> Dict[str, Any]:
        return fields

    def _update(self, entity_id: str, fields: Dict[str, Any], duplicate_message: str = None):
        operation = f"update {self.entity_name}"
        if "id" in fields or "_id" in fields:
            raise ValidationError("id cannot be changed", operation=operation, entity_id=entity_id)
        oid = to_object_id(entity_id, operation)
        with translate_errors(operation, entity_id, duplicate_message or "Duplicate value for a unique field"):
            prior = self.collection.find_one({"_id": oid})
            if prior is None:
                return None
            fields = self._prepare_update(prior, dict(fields))
            to_set, to_unset = split_update(fields)
            to_set["updatedAt"] = next_timestamp(prior.get("updatedAt"))
            update = {"$set": to_set}
            if to_unset:
                update["$unset"] = to_unset
            doc = self.collection.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )
        db_logger.info(f"UPDATE {self.entity_name} (id={entity_id}): {sorted(fields)}")
        return self._to_model(doc)

    def _apply(self, entity_id: str, update: Dict[str, Any], operation: str):
        """Atomic array/field operator update that also moves updatedAt past its stored value."""
        oid = to_object_id(entity_id, operation)
        with translate_errors(operation, entity_id):
            prior = self.collection.find_one({"_id": oid}, {"updatedAt": 1})
            if prior is None:
                return None
            update = dict(update)
            update["$set"] = dict(update.get("$set", {}), updatedAt=next_timestamp(prior.get("updatedAt")))
            doc = self.collection.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )
        return self._to_model(doc)


class PlantStore(DocumentStore):
    entity_name = "plant"
    model = Plant
    duplicate_message = "A plant with this name already exists"

    def create(self, plant: PlantCreate) -> Plant:
        with translate_errors("create plant", duplicate_message=self.duplicate_message):
            doc = create_document(self.collection, plant.to_document(exclude_none=True))
        db_logger.info(f"CREATE plant (id={doc['_id']}): {plant.name}")
        return self._to_model(doc)

    def list(self, active_only: bool = False) -> List[Plant]:
        filter_dict = {"status": PlantStatus.GROWING.value} if active_only else {}
        with translate_errors("list plants"):
            docs = get_documents(self.collection, filter_dict, sort=[("updatedAt", DESCENDING)])
        return [self._to_model(doc) for doc in docs]

    def _prepare_update(self, prior: dict, fields: Dict[str, Any]) -> Dict[str, Any]:
        status = fields.get("status")
        if status == PlantStatus.HARVESTED.value and "harvestDate" not in fields \
                and prior.get("harvestDate") is None:
            fields["harvestDate"] = utc_now()
        elif status is not None and status != PlantStatus.HARVESTED.value \
                and prior.get("status") == PlantStatus.HARVESTED.value and "harvestDate" not in fields:
            # leaving Harvested clears the harvest date unless one is supplied
            fields["harvestDate"] = None
        start = fields.get("startDate") or prior.get("startDate")
        harvest = fields["harvestDate"] if "harvestDate" in fields else prior.get("harvestDate")
        if start is not None and harvest is not None and harvest < start:
            raise ValidationError("harvestDate must not be before startDate",
                                  operation="update plant", entity_id=str(prior["_id"]))
        return fields

    def update(self, plant_id: str, changes: Union[PlantUpdate, Dict[str, Any]]) -> Optional[Plant]:
        fields = changes.to_update_fields() if isinstance(changes, PlantUpdate) else changes
        return self._update(plant_id, fields, self.duplicate_message)

    def harvest(self, plant_id: str, harvest_date: datetime = None) -> Optional[Plant]:
        return self.update(plant_id, {
            "status": PlantStatus.HARVESTED.value,
            "harvestDate": harvest_date or utc_now(),
        })

    def set_cover_image(self, plant_id: str, image_id: str) -> Optional[Plant]:
        return self.update(plant_id, {"coverImageId": image_id})

    def clear_cover_image(self, image_id: str) -> int:
        with translate_errors("clear cover image", image_id):
            covered = list(self.collection.find({"coverImageId": image_id}, {"updatedAt": 1}))
            for doc in covered:
                self.collection.update_one(
                    {"_id": doc["_id"]},
                    {"$unset": {"coverImageId": ""},
                     "$set": {"updatedAt": next_timestamp(doc.get("updatedAt"))}},
                )
        return len(covered)

    def append_growth_metric(self, plant_id: str, metric: GrowthMetric) -> Optional[Plant]:
        return self._apply(plant_id, {"$push": {"growthMetrics": metric.to_document(exclude_none=True)}},
                           "add growth metric")

    def latest_growth_metric(self, plant_id: str) -> Optional[GrowthMetric]:
        plant = self.get_by_id(plant_id)
        if plant is None or not plant.growth_metrics:
            return None
        return max(plant.growth_metrics, key=lambda metric: metric.date)


class ActionStore(DocumentStore):
    entity_name = "action"
    model = Action

    def create(self, action: ActionCreate) -> Action:
        data = action.to_document(exclude_none=True)
        data["plantId"] = to_object_id(action.plant_id, "create action")
        with translate_errors("create action"):
            doc = create_document(self.collection, data)
        db_logger.info(f"CREATE action (id={doc['_id']}): {action.action_type} on plant {action.plant_id}")
        return self._to_model(doc)

    def list(self, plant_id: str = None, action_type: str = None, limit: int = None) -> List[Action]:
        filter_dict = {}
        if plant_id:
            filter_dict["plantId"] = to_object_id(plant_id, "list actions")
        if action_type:
            filter_dict["actionType"] = action_type
        with translate_errors("list actions", plant_id):
            docs = get_documents(self.collection, filter_dict, sort=[("date", DESCENDING)], limit=limit)
        return [self._to_model(doc) for doc in docs]

    def update(self, action_id: str, changes: Union[ActionUpdate, Dict[str, Any]]) -> Optional[Action]:
        fields = changes.to_update_fields() if isinstance(changes, ActionUpdate) else dict(changes)
        if isinstance(fields.get("plantId"), str):
            fields["plantId"] = to_object_id(fields["plantId"], "update action")
        return self._update(action_id, fields)

    def _change_image_ref(self, action_id: str, image_id: str, operator: str, operation: str):
        return self._apply(action_id, {operator: {"imageIds": image_id}}, operation)

    def add_image_ref(self, action_id: str, image_id: str) -> Optional[Action]:
        return self._change_image_ref(action_id, image_id, "$addToSet", "add image to action")

    def remove_image_ref(self, action_id: str, image_id: str) -> Optional[Action]:
        return self._change_image_ref(action_id, image_id, "$pull", "remove image from action")

    def count_by_type(self, plant_id: str) -> Dict[str, int]:
        """Action counts per type for a plant; every type is present."""
        oid = to_object_id(plant_id, "count actions")
        pipeline = [
            {"$match": {"plantId": oid}},
            {"$group": {"_id": "$actionType", "count": {"$sum": 1}}},
        ]
        with translate_errors("count actions", plant_id):
            rows = list(self.collection.aggregate(pipeline))
        counts = empty_action_counts()
        for row in rows:
            counts[row["_id"]] = row["count"]
        return counts

    def delete_for_plant(self, plant_id: str) -> int:
        oid = to_object_id(plant_id, "delete plant actions")
        with translate_errors("delete plant actions", plant_id):
            result = self.collection.delete_many({"plantId": oid})
        if result.deleted_count:
            db_logger.warning(f"DELETE {result.deleted_count} actions of plant (id={plant_id})")
        return result.deleted_count


class ImageStore(DocumentStore):
    entity_name = "image"
    model = Image

    def create(self, storage_key: str, filename: str, content_type: str, size: int,
               ref: Union[PlantRef, ActionRef]) -> Image:
        data = {
            "storageKey": storage_key,
            "filename": filename,
            "contentType": content_type,
            "size": size,
            "entityType": ref.entity_type,
            "entityId": to_object_id(ref.entity_id, "create image"),
            "uploadDate": utc_now(),
        }
        with translate_errors("create image", duplicate_message="Storage key already in use"):
            result = self.collection.insert_one(data)
        data["_id"] = result.inserted_id
        db_logger.info(f"CREATE image (id={result.inserted_id}): {storage_key}")
        return self._to_model(data)

    def list_for_entity(self, ref: Union[PlantRef, ActionRef]) -> List[Image]:
        filter_dict = {
            "entityType": ref.entity_type,
            "entityId": to_object_id(ref.entity_id, "list images"),
        }
        with translate_errors("list images", ref.entity_id):
            docs = get_documents(self.collection, filter_dict, sort=[("uploadDate", DESCENDING)])
        return [self._to_model(doc) for doc in docs]


class Database:
    """Shared MongoDB client plus one store per collection."""

    def __init__(self, client, name: str):
        self.client = client
        self.db = client[name]
        self.plants = PlantStore(self.db[PLANTS])
        self.actions = ActionStore(self.db[ACTIONS])
        self.images = ImageStore(self.db[IMAGES])
        self.indexes_ready = False

    @classmethod
    def from_settings(cls, settings) -> "Database":
        client = MongoClient(
            settings.mongodb_uri,
            serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
            waitQueueTimeoutMS=settings.mongodb_timeout_ms,
            maxPoolSize=settings.mongodb_max_pool_size,
        )
        return cls(client, settings.mongodb_db)

    def ensure_indexes(self) -> None:
        with translate_errors("create indexes"):
            plants = self.db[PLANTS]
            plants.create_index([("name", ASCENDING)], unique=True)
            plants.create_index([("status", ASCENDING)])
            plants.create_index([("growCycleType", ASCENDING)])
            plants.create_index([("createdAt", DESCENDING)])

            actions = self.db[ACTIONS]
            actions.create_index([("plantId", ASCENDING)])
            actions.create_index([("actionType", ASCENDING)])
            actions.create_index([("date", DESCENDING)])

            images = self.db[IMAGES]
            images.create_index([("entityType", ASCENDING), ("entityId", ASCENDING)])
            images.create_index([("storageKey", ASCENDING)], unique=True)
        self.indexes_ready = True
        db_logger.info("Indexes ensured")

    def collection_names(self) -> List[str]:
        with translate_errors("list collections"):
            return self.db.list_collection_names()

    def close(self) -> None:
        self.client.close()
