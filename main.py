"""
Grow Tracker API.

Run with `uvicorn main:create_app --factory` or `python main.py`.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings
from database import DEFAULT_ACTION_LIMIT, Database
from errors import GrowTrackerError, NotFoundError, PersistenceError, StorageError
from logger import api_logger, configure_logging
from metrics import dashboard_summary, plant_summary, sorted_growth_metrics
from schemas import (
    Action,
    ActionCreate,
    ActionType,
    ActionUpdate,
    DashboardSummary,
    GrowthMetric,
    HarvestRequest,
    ImageWithUrl,
    Plant,
    PlantCreate,
    PlantSummary,
    PlantUpdate,
    is_object_id,
    utc_now,
    validate_entity_ref,
    validate_growth_metric,
    validate_image_upload,
)
from services import ImageService, delete_action, delete_plant
from storage import BlobStore

router = APIRouter()


# Helpers
class IdModel(BaseModel):
    id: str


def get_db(request: Request) -> Database:
    """Shared database; indexes missed at startup are created on first use."""
    database = request.app.state.database
    if not database.indexes_ready:
        database.ensure_indexes()
    return database


def get_image_service(request: Request) -> ImageService:
    return request.app.state.images


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def check_id(entity: str, entity_id: str) -> str:
    """A malformed id cannot reference anything, so it is reported as not found."""
    if not is_object_id(entity_id):
        raise NotFoundError(f"{entity} not found", operation=f"fetch {entity.lower()}", entity_id=entity_id)
    return entity_id


def found(value, entity: str, entity_id: str):
    if value is None:
        raise NotFoundError(f"{entity} not found", operation=f"fetch {entity.lower()}", entity_id=entity_id)
    return value


@router.get("/")
def read_root():
    return {"message": "Grow Tracker Backend Running"}


@router.get("/test")
def test_services(request: Request, images: ImageService = Depends(get_image_service)):
    database = request.app.state.database
    response = {
        "backend": "Running",
        "database": "Not Available",
        "collections": [],
        "storage": "Not Available",
    }
    try:
        response["collections"] = database.collection_names()[:10]
        response["database"] = "Connected"
    except PersistenceError as e:
        api_logger.error(f"Database health check failed: {e.__cause__ or e}")
        response["database"] = "Error"
    try:
        images.blobs.ping()
        response["storage"] = "Connected"
    except StorageError as e:
        api_logger.error(f"Storage health check failed: {e.__cause__ or e}")
        response["storage"] = "Error"
    return response


# ---------------- Plant Endpoints ----------------
@router.get("/plants", response_model=List[Plant])
def list_plants(active: bool = False, database: Database = Depends(get_db)):
    return database.plants.list(active_only=active)


@router.post("/plants", response_model=Plant, status_code=201)
def create_plant(plant: PlantCreate, database: Database = Depends(get_db)):
    return database.plants.create(plant)


@router.get("/plants/{plant_id}", response_model=Plant)
def get_plant(plant_id: str, database: Database = Depends(get_db)):
    check_id("Plant", plant_id)
    return found(database.plants.get_by_id(plant_id), "Plant", plant_id)


@router.patch("/plants/{plant_id}", response_model=Plant)
def update_plant(plant_id: str, changes: PlantUpdate, database: Database = Depends(get_db)):
    check_id("Plant", plant_id)
    return found(database.plants.update(plant_id, changes), "Plant", plant_id)


@router.delete("/plants/{plant_id}", response_model=IdModel)
def remove_plant(plant_id: str, database: Database = Depends(get_db),
                 images: ImageService = Depends(get_image_service)):
    check_id("Plant", plant_id)
    return {"id": found(delete_plant(database, images, plant_id), "Plant", plant_id)}


@router.post("/plants/{plant_id}/harvest", response_model=Plant)
def harvest_plant(plant_id: str, body: Optional[HarvestRequest] = None, database: Database = Depends(get_db)):
    check_id("Plant", plant_id)
    harvest_date = body.harvest_date if body else None
    return found(database.plants.harvest(plant_id, harvest_date), "Plant", plant_id)


# ---------------- Growth Metrics ----------------
@router.get("/plants/{plant_id}/growth", response_model=List[GrowthMetric])
def list_growth_metrics(plant_id: str, database: Database = Depends(get_db)):
    check_id("Plant", plant_id)
    plant = found(database.plants.get_by_id(plant_id), "Plant", plant_id)
    return sorted_growth_metrics(plant)


@router.post("/plants/{plant_id}/growth", response_model=List[GrowthMetric], status_code=201)
def add_growth_metric(plant_id: str, payload: dict, database: Database = Depends(get_db)):
    check_id("Plant", plant_id)
    metric = validate_growth_metric(payload)
    plant = found(database.plants.append_growth_metric(plant_id, metric), "Plant", plant_id)
    return sorted_growth_metrics(plant)


# ---------------- Actions ----------------
@router.get("/actions", response_model=List[Action])
def list_actions(
    plant_id: Optional[str] = Query(None, alias="plantId"),
    action_type: Optional[ActionType] = Query(None, alias="actionType"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    database: Database = Depends(get_db),
):
    if plant_id is not None and not is_object_id(plant_id):
        return []
    if plant_id is None and limit is None:
        limit = DEFAULT_ACTION_LIMIT
    kind = action_type.value if action_type else None
    return database.actions.list(plant_id=plant_id, action_type=kind, limit=limit)


@router.post("/actions", response_model=Action, status_code=201)
def create_action(action: ActionCreate, database: Database = Depends(get_db)):
    return database.actions.create(action)


@router.get("/actions/{action_id}", response_model=Action)
def get_action(action_id: str, database: Database = Depends(get_db)):
    check_id("Action", action_id)
    return found(database.actions.get_by_id(action_id), "Action", action_id)


@router.patch("/actions/{action_id}", response_model=Action)
def update_action(action_id: str, changes: ActionUpdate, database: Database = Depends(get_db)):
    check_id("Action", action_id)
    return found(database.actions.update(action_id, changes), "Action", action_id)


@router.delete("/actions/{action_id}", response_model=IdModel)
def remove_action(action_id: str, database: Database = Depends(get_db),
                  images: ImageService = Depends(get_image_service)):
    check_id("Action", action_id)
    return {"id": found(delete_action(database, images, action_id), "Action", action_id)}


# ---------------- Images ----------------
@router.get("/images/entity", response_model=List[ImageWithUrl])
def list_entity_images(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    images: ImageService = Depends(get_image_service),
):
    return images.list_for_entity(validate_entity_ref(entity_type, entity_id))


@router.get("/images/{image_id}", response_model=ImageWithUrl)
def get_image(image_id: str, images: ImageService = Depends(get_image_service)):
    check_id("Image", image_id)
    return found(images.get(image_id), "Image", image_id)


@router.delete("/images/{image_id}", response_model=IdModel)
def remove_image(image_id: str, images: ImageService = Depends(get_image_service)):
    check_id("Image", image_id)
    return {"id": found(images.delete(image_id), "Image", image_id)}


@router.post("/uploads", response_model=ImageWithUrl, status_code=201)
def upload_image(
    file: Optional[UploadFile] = File(None),
    entity_type: Optional[str] = Form(None, alias="entityType"),
    entity_id: Optional[str] = Form(None, alias="entityId"),
    images: ImageService = Depends(get_image_service),
):
    ref = validate_image_upload(entity_type, entity_id, file.filename if file else None)
    data = file.file.read()
    content_type = file.content_type or "application/octet-stream"
    return images.upload(data, file.filename, content_type, ref)


# ---------------- Stats ----------------
@router.get("/stats/dashboard", response_model=DashboardSummary)
def dashboard_stats(database: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    plants = database.plants.list()
    actions = database.actions.list()
    return dashboard_summary(plants, actions, utc_now(), settings)


@router.get("/stats/plant", response_model=PlantSummary)
def plant_stats(plant_id: str = Query(..., alias="plantId"), database: Database = Depends(get_db),
                settings: Settings = Depends(get_settings)):
    check_id("Plant", plant_id)
    plant = found(database.plants.get_by_id(plant_id), "Plant", plant_id)
    actions = database.actions.list(plant_id=plant_id)
    summary = plant_summary(plant, actions, utc_now(), settings)
    summary.action_counts = database.actions.count_by_type(plant_id)
    return summary


# ---------------- Error handling ----------------
async def handle_tracker_error(request: Request, exc: GrowTrackerError):
    where = f"{request.method} {request.url.path}"
    if exc.status_code >= 500:
        api_logger.error(f"{where} failed [{exc.context()}]: {exc.message}; cause: {exc.__cause__!r}")
    else:
        api_logger.info(f"{where} -> {exc.status_code} [{exc.context()}]: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", message)
    api_logger.info(f"{request.method} {request.url.path} -> 400: {message}")
    return JSONResponse(status_code=400, content={"error": message})


async def handle_unexpected(request: Request, exc: Exception):
    api_logger.exception(f"{request.method} {request.url.path} crashed: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Settings = None, database: Database = None, blobs: BlobStore = None) -> FastAPI:
    """Build the app; gateways are created once here and shared by every request."""
    settings = settings or Settings.from_env()
    configure_logging(settings)
    owns_database = database is None
    database = database or Database.from_settings(settings)
    blobs = blobs or BlobStore.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            database.ensure_indexes()
        except PersistenceError as e:
            api_logger.error(f"Could not ensure indexes: {e.__cause__ or e}")
        try:
            blobs.ensure_bucket()
        except StorageError as e:
            api_logger.error(f"Could not ensure bucket {blobs.bucket}: {e.__cause__ or e}")
        yield
        if owns_database:
            database.close()

    app = FastAPI(title="Grow Tracker API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.database = database
    app.state.images = ImageService(database, blobs)

    app.add_exception_handler(GrowTrackerError, handle_tracker_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
