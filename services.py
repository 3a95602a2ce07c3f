"""
Workflows spanning the database and the blob store: image upload/delete
with compensation, and cascading plant deletion.
"""

import logging
from typing import List, Optional, Union

from database import Database
from errors import GrowTrackerError, NotFoundError, PersistenceError, StorageError
from schemas import ActionRef, EntityType, Image, ImageWithUrl, PlantRef
from storage import BlobStore

logger = logging.getLogger("growtracker")


class ImageService:
    def __init__(self, database: Database, blobs: BlobStore):
        self.database = database
        self.blobs = blobs

    def _entity_exists(self, ref: Union[PlantRef, ActionRef]) -> bool:
        if ref.entity_type == EntityType.PLANT.value:
            return self.database.plants.get_by_id(ref.entity_id) is not None
        return self.database.actions.get_by_id(ref.entity_id) is not None

    def with_url(self, image: Image) -> ImageWithUrl:
        try:
            url = self.blobs.get_access_url(image.storage_key)
        except StorageError as e:
            logger.warning(f"No url for image {image.id} ({image.storage_key}): {e}")
            url = None
        return ImageWithUrl(**image.model_dump(), url=url)

    def get(self, image_id: str) -> Optional[ImageWithUrl]:
        image = self.database.images.get_by_id(image_id)
        return self.with_url(image) if image else None

    def list_for_entity(self, ref: Union[PlantRef, ActionRef]) -> List[ImageWithUrl]:
        return [self.with_url(image) for image in self.database.images.list_for_entity(ref)]

    def upload(self, data: bytes, filename: str, content_type: str,
               ref: Union[PlantRef, ActionRef]) -> ImageWithUrl:
        """
        Store the bytes, then the metadata.

        If the metadata write (or linking the image to its action) fails, the
        blob and any metadata already written are removed again before the
        error propagates, so no orphaned object is left behind.
        """
        if not self._entity_exists(ref):
            raise NotFoundError(f"{ref.entity_type} not found", operation="upload image",
                                entity_id=ref.entity_id)

        key = self.blobs.generate_key(ref.entity_type, ref.entity_id, filename)
        self.blobs.put(data, key, content_type)
        image = None
        try:
            image = self.database.images.create(key, filename, content_type, len(data), ref)
            if ref.entity_type == EntityType.ACTION.value:
                self.database.actions.add_image_ref(ref.entity_id, image.id)
        except GrowTrackerError:
            logger.error(f"Saving upload {key} failed, removing what was written")
            self._discard(key, image)
            raise
        return self.with_url(image)

    def _discard(self, key: str, image: Optional[Image]) -> None:
        try:
            self.blobs.delete(key)
        except StorageError as e:
            logger.error(f"Orphaned blob {key} could not be removed: {e}")
            return
        if image is None:
            return
        try:
            self.database.images.delete(image.id)
        except PersistenceError as e:
            logger.error(f"Orphaned image metadata {image.id} could not be removed: {e}")

    def delete(self, image_id: str) -> Optional[str]:
        """
        Delete the blob, then the metadata.

        Metadata is only removed after the blob delete succeeded; a blob that
        is already gone counts as deleted.
        """
        image = self.database.images.get_by_id(image_id)
        if image is None:
            return None

        self.blobs.delete(image.storage_key)
        deleted = self.database.images.delete(image_id)

        if image.entity_type == EntityType.ACTION.value:
            self.database.actions.remove_image_ref(image.entity_id, image_id)
        self.database.plants.clear_cover_image(image_id)
        return deleted


def delete_action(database: Database, images: ImageService, action_id: str) -> Optional[str]:
    """Delete an action and the images attached to it."""
    if database.actions.get_by_id(action_id) is None:
        return None

    for image in database.images.list_for_entity(ActionRef(entity_id=action_id)):
        images.delete(image.id)
    return database.actions.delete(action_id)


def delete_plant(database: Database, images: ImageService, plant_id: str) -> Optional[str]:
    """Delete a plant together with its actions and every image attached to either."""
    if database.plants.get_by_id(plant_id) is None:
        return None

    actions = database.actions.list(plant_id=plant_id)
    refs = [PlantRef(entity_id=plant_id)] + [ActionRef(entity_id=action.id) for action in actions]
    for ref in refs:
        for image in database.images.list_for_entity(ref):
            images.delete(image.id)

    database.actions.delete_for_plant(plant_id)
    result = database.plants.delete(plant_id)
    logger.warning(f"Deleted plant {plant_id} with {len(actions)} actions")
    return result
