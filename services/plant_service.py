from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from services.auth_service import Principal
from services.blob_service import BatchUploader
from services.errors import ForbiddenError, ValidationError
from services.repository_service import RepositoryService
from utils.deadline import Deadline
from utils.validation import clean_text

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("common_name", "scientific_name", "toxicity")


class PlantService:

    def __init__(self, repo: RepositoryService, uploader: BatchUploader):
        self.repo = repo
        self.uploader = uploader

    def _owned_plant(self, principal: Principal, plant_id: str) -> Dict:
        plant = self.repo.get_plant(plant_id)
        if plant["user_id"] != principal.user_id:
            raise ForbiddenError("Forbidden: you do not own this plant")
        return plant

    @staticmethod
    def _clean_fields(data: Dict) -> Dict:
        cleaned = {k: clean_text(v, k) for k, v in data.items() if k in TEXT_FIELDS}
        for k in ("scientific_name", "toxicity"):
            if k in cleaned:
                cleaned[k] = cleaned[k] or None
        return cleaned

    def create_plant(
            self,
            principal: Principal,
            data: Dict,
            image_paths: Sequence[str] = (),
            deadline: Optional[Deadline] = None,
            category_ids: Sequence[int] = (),
    ) -> Dict:
        """
        Uploads the images first, then stores the plant with its image URLs.
        A failed upload fails the whole creation; no plant row is written.
        Owner and categories are checked before anything reaches the store.
        """
        data = self._clean_fields(data)
        if not data.get("common_name"):
            raise ValidationError("Field 'common_name' is required")
        self.repo.check_plant_refs(principal.user_id, category_ids)

        logger.info("attempting to add a new plant for user %s", principal.user_id)
        image_urls = self.uploader.upload(list(image_paths), deadline)
        return self.repo.add_plant(
            {**data, "user_id": principal.user_id},
            image_urls,
            category_ids,
        )

    def add_plant_images(
            self,
            principal: Principal,
            plant_id: str,
            image_paths: Sequence[str],
            deadline: Optional[Deadline] = None,
    ) -> Dict:
        if not image_paths:
            raise ValidationError("at least one image is required")
        self._owned_plant(principal, plant_id)
        image_urls = self.uploader.upload(list(image_paths), deadline)
        return self.repo.add_plant_images(plant_id, image_urls)

    def get_plant(self, plant_id: str) -> Dict:
        logger.info("Retrieving a plant with id: %s", plant_id)
        return self.repo.get_plant(plant_id)

    def get_plants_by_user_id(self, user_id: str) -> List[Dict]:
        return self.repo.get_plants_by_user_id(user_id)

    def update_plant(
            self,
            principal: Principal,
            plant_id: str,
            data: Dict,
            category_ids: Optional[Sequence[int]] = None,
    ) -> Dict:
        self._owned_plant(principal, plant_id)
        data = self._clean_fields(data)
        if "common_name" in data and not data["common_name"]:
            raise ValidationError("Field 'common_name' cannot be empty")
        return self.repo.update_plant(plant_id, data, category_ids)

    def delete_plant(self, principal: Principal, plant_id: str) -> None:
        self._owned_plant(principal, plant_id)
        self.repo.delete_plant(plant_id)

    def list_categories(self) -> List[Dict]:
        return self.repo.list_categories()
