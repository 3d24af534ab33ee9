from __future__ import annotations

import logging
from typing import Dict, Optional

from werkzeug.security import generate_password_hash

from services.auth_service import Principal
from services.blob_service import BatchUploader
from services.errors import ForbiddenError, ValidationError
from services.repository_service import RepositoryService
from utils.deadline import Deadline
from utils.validation import clean_text, is_valid_email

logger = logging.getLogger(__name__)


class UserService:

    def __init__(self, repo: RepositoryService, uploader: BatchUploader):
        self.repo = repo
        self.uploader = uploader

    @staticmethod
    def _require_self(principal: Principal, user_id: str) -> None:
        if principal.user_id != user_id:
            raise ForbiddenError("Forbidden: you can only change your own account")

    def add_user(self, payload: Dict) -> Dict:
        fields = {k: clean_text(payload.get(k), k) for k in ("username", "email", "password", "name")}
        missing = [k for k in ("username", "email", "password") if not fields[k]]
        if missing:
            raise ValidationError(f"Mandatory fields: {', '.join(missing)}")

        email = fields["email"].lower()
        if not is_valid_email(email):
            raise ValidationError(f"not a valid email address format: {email}")

        return self.repo.add_user({
            "email": email,
            "username": fields["username"],
            "name": fields["name"] or None,
            "password_hash": generate_password_hash(payload["password"]),
        })

    def get_user(self, user_id: str) -> Dict:
        return self.repo.get_user(user_id)

    def update_user(self, principal: Principal, user_id: str, payload: Dict) -> Dict:
        self._require_self(principal, user_id)

        data = {}
        for k in ("name", "username", "email"):
            if k in payload:
                data[k] = clean_text(payload[k], k)
        if "image_url" in payload:
            data["profile_image"] = clean_text(payload["image_url"], "image_url") or None

        if "email" in data:
            data["email"] = data["email"].lower()
            if not is_valid_email(data["email"]):
                raise ValidationError(f"not a valid email address format: {data['email']}")
        if "username" in data and not data["username"]:
            raise ValidationError("username cannot be empty")
        if "name" in data:
            data["name"] = data["name"] or None

        return self.repo.update_user(user_id, data)

    def delete_user(self, principal: Principal, user_id: str) -> None:
        self._require_self(principal, user_id)
        self.repo.delete_user(user_id)
        logger.info("user %s marked as deleted", user_id)

    def update_user_profile_image(
            self,
            principal: Principal,
            user_id: str,
            path: str,
            deadline: Optional[Deadline] = None,
    ) -> str:
        self._require_self(principal, user_id)
        # make sure the account exists before touching the blob store
        self.repo.get_user(user_id)
        result_uris = self.uploader.upload([path], deadline)
        return self.repo.update_user_profile_image(user_id, result_uris[0])

    def check_if_username_is_taken(self, username: str) -> bool:
        return self.repo.check_if_username_is_taken(username)
