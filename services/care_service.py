from __future__ import annotations

from typing import Dict, List

from services.auth_service import Principal
from services.errors import ForbiddenError
from services.repository_service import RepositoryService


class CareService:

    def __init__(self, repo: RepositoryService):
        self.repo = repo

    def _check_plant_owner(self, principal: Principal, plant_id: str) -> None:
        plant = self.repo.get_plant(plant_id)
        if plant["user_id"] != principal.user_id:
            raise ForbiddenError("Forbidden: you do not own this plant")

    def get_care_log_entries(self, principal: Principal, plant_id: str) -> List[Dict]:
        self._check_plant_owner(principal, plant_id)
        return self.repo.get_care_log_entries(plant_id)

    def add_care_log_entry(self, principal: Principal, entry: Dict) -> Dict:
        self._check_plant_owner(principal, entry["plant_id"])
        return self.repo.add_care_log_entry(entry)

    def update_care_log_entry(self, principal: Principal, entry_id: str, entry: Dict) -> Dict:
        current = self.repo.get_care_log_entry(entry_id)
        self._check_plant_owner(principal, current["plant_id"])
        return self.repo.update_care_log_entry(entry_id, entry)

    def delete_care_log_entry(self, principal: Principal, entry_id: str) -> None:
        current = self.repo.get_care_log_entry(entry_id)
        self._check_plant_owner(principal, current["plant_id"])
        self.repo.delete_care_log_entry(entry_id)

    def get_all_users_care_logs(self, principal: Principal, user_id: str) -> List[Dict]:
        if principal.user_id != user_id:
            raise ForbiddenError("Forbidden: you can only read your own care log")
        return self.repo.get_care_logs_for_user(user_id)
