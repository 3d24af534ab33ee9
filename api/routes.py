from __future__ import annotations

import os
import re
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps

from flask import Blueprint, abort, current_app, g, jsonify, request
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from services.errors import (
    AuthenticationError,
    DeadlineExceeded,
    DuplicateKeyError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from utils.validation import clean_text, is_valid_uuid

api_blueprint = Blueprint("api", __name__)

MAX_PLANT_IMAGES = 5
_IMAGE_FIELD = re.compile(r"^image(\d+)$")


def _svc():
    return current_app.extensions["plantlog"]


def _settings():
    return current_app.config["SETTINGS"]


def _ok(content=None, message: str = "", status: int = 200):
    return jsonify({"content": content, "message": message}), status


# ========= Errors =========
_ERROR_STATUS = (
    (ValidationError, 400),
    (DuplicateKeyError, 400),
    (AuthenticationError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (DeadlineExceeded, 504),
)


@api_blueprint.errorhandler(401)
def auth_missing(e):
    return jsonify({"error": "Missing or invalid JWT token"}), 401


@api_blueprint.errorhandler(ServiceError)
def handle_service_error(e: ServiceError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(e, cls)), 500)
    if status >= 500:
        current_app.logger.exception("unsuccessful request, status code: %d", status)
        message = str(e) if status == 504 else "Unexpected error"
    else:
        current_app.logger.info("unsuccessful request, status code: %d | error: %s", status, e)
        message = str(e)
    return jsonify({"content": None, "message": message}), status


# ========= Helpers =========
def _extract_token() -> str | None:
    auth = (request.headers.get("Authorization") or "").strip()
    if not auth:
        return None
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return auth


def require_jwt(fn):
    """Resolves the bearer token and hands the Principal to the view as first argument."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        principal = _svc().auth.authenticate(_extract_token())
        if principal is None:
            abort(401)
        return fn(principal, *args, **kwargs)

    return wrapper


def _ensure_uuid(s: str, field: str = "id"):
    if not is_valid_uuid(s):
        abort(400, description=f"Invalid {field} format")


def _parse_json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400, description="unable to decode request")
    return body


def _json_or_empty() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _parse_bool(raw, field: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in {"true", "false", "1", "0"}:
        return raw.strip().lower() in {"true", "1"}
    raise ValidationError(f"'{field}' must be a boolean")


def _parse_datetime(raw, field: str) -> datetime:
    try:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"'{field}' must be an ISO-8601 datetime") from exc
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_category_ids(raw) -> list[int]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        raw = [p for p in raw.split(",") if p.strip()]
    if not isinstance(raw, list):
        raise ValidationError("'category_ids' must be a list of integers")
    try:
        return [int(v) for v in raw]
    except (TypeError, ValueError) as exc:
        raise ValidationError("'category_ids' must be a list of integers") from exc


def _image_files_from_form() -> list:
    """image0, image1, ... in index order (gaps are not allowed)."""
    indexed = {}
    for name in request.files:
        m = _IMAGE_FIELD.match(name)
        if m:
            indexed[int(m.group(1))] = request.files[name]
    if sorted(indexed) != list(range(len(indexed))):
        raise ValidationError("images must be sent as image0, image1, ... without gaps")
    if len(indexed) > MAX_PLANT_IMAGES:
        raise ValidationError(f"at most {MAX_PLANT_IMAGES} images per request")
    return [indexed[i] for i in range(len(indexed))]


@contextmanager
def _saved_images(files):
    """
    Writes the uploaded files into a private temp dir under UPLOAD_DIR and
    yields their paths. The dir is removed when the request is done.
    """
    settings = _settings()
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    tmp_dir = tempfile.mkdtemp(prefix="req-", dir=settings.UPLOAD_DIR)
    try:
        paths = []
        for f in files:
            if not f or not f.filename:
                raise ValidationError("file missing")
            _, ext = os.path.splitext(secure_filename(f.filename))
            ext = ext.lower()
            if ext not in settings.ALLOWED_IMAGE_EXT:
                raise ValidationError(f"Extension not allowed: {ext or f.filename}")
            dest_path = os.path.join(tmp_dir, f"{uuid.uuid4().hex}{ext}")
            f.save(dest_path)
            try:
                with Image.open(dest_path) as img:
                    img.verify()
            except (UnidentifiedImageError, OSError, SyntaxError) as exc:
                raise ValidationError(f"not a valid image: {f.filename}") from exc
            paths.append(dest_path)
        yield paths
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def _plant_fields(source) -> dict:
    return {k: source.get(k) for k in ("common_name", "scientific_name", "toxicity") if k in source}


# ======== AUTH =========
def _set_refresh_cookie(resp, raw_refresh: str):
    resp.set_cookie(
        "refresh_token",
        raw_refresh,
        max_age=60 * 60 * 24 * _settings().REFRESH_TTL_DAYS,
        httponly=True,
        secure=False,  # True in production (HTTPS)
        samesite="Lax",
        path="/",
    )


@api_blueprint.route("/auth/login", methods=["POST"])
def auth_login():
    """
    JSON body: { "email": "...", "password": "..." }

    Returns (200): { "access_token", "refresh_token", "user_id" }
    + HttpOnly cookie "refresh_token".
    """
    data = _json_or_empty()
    email = clean_text(data.get("email"), "email").lower()
    password = data.get("password") or ""
    if not isinstance(password, str):
        raise ValidationError("'password' must be a string")
    if not email or not password:
        return jsonify({"error": "email/password missing"}), 400

    td = _svc().auth.login(email, password)
    resp = jsonify({
        "access_token": td.access_token,
        "refresh_token": td.refresh_token,
        "user_id": td.user_id,
    })
    _set_refresh_cookie(resp, td.refresh_token)
    return resp, 200


@api_blueprint.route("/auth/refresh", methods=["POST"])
def auth_refresh():
    body = _json_or_empty()
    raw = request.cookies.get("refresh_token") or body.get("refresh_token")
    if not raw or not isinstance(raw, str):
        return jsonify({"error": "missing refresh token"}), 401

    td = _svc().auth.refresh(raw)
    resp = jsonify({"access_token": td.access_token, "user_id": td.user_id})
    _set_refresh_cookie(resp, raw)
    return resp, 200


@api_blueprint.route("/auth/logout", methods=["POST"])
def auth_logout():
    body = _json_or_empty()
    raw = request.cookies.get("refresh_token") or body.get("refresh_token")
    _svc().auth.logout(raw if isinstance(raw, str) else None)
    resp = jsonify({"ok": True})
    resp.delete_cookie("refresh_token", path="/")
    return resp, 200


# ========= Plants =========
@api_blueprint.route("/plant", methods=["POST"])
@require_jwt
def create_plant(principal):
    """
    multipart/form-data:
      - common_name (required), scientific_name, toxicity
      - category_ids (comma separated, optional)
      - image0 .. imageN (optional)
    A JSON body with the same fields (no images) is accepted too.
    """
    if request.is_json:
        body = _parse_json_body()
        files = []
    else:
        body = request.form
        files = _image_files_from_form()

    data = _plant_fields(body)
    category_ids = _parse_category_ids(
        body.get("category_ids") if request.is_json else ",".join(request.form.getlist("category_ids"))
    )

    with _saved_images(files) as paths:
        plant = _svc().plants.create_plant(principal, data, paths, g.deadline, category_ids)
    return _ok(plant, "plant successfully created", 201)


@api_blueprint.route("/plant/<plant_id>/images", methods=["POST"])
@require_jwt
def add_plant_images(principal, plant_id: str):
    _ensure_uuid(plant_id, "plant_id")
    files = _image_files_from_form()
    with _saved_images(files) as paths:
        plant = _svc().plants.add_plant_images(principal, plant_id, paths, g.deadline)
    return _ok(plant, "images successfully added", 201)


@api_blueprint.route("/plant/<plant_id>", methods=["GET"])
@require_jwt
def get_plant(principal, plant_id: str):
    _ensure_uuid(plant_id, "plant_id")
    return _ok(_svc().plants.get_plant(plant_id))


@api_blueprint.route("/plant/user/<user_id>", methods=["GET"])
@require_jwt
def get_plants_by_user_id(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    current_app.logger.info("Attempting to get all plants that belong to user with id: %s", user_id)
    return _ok(_svc().plants.get_plants_by_user_id(user_id))


@api_blueprint.route("/plant/<plant_id>", methods=["PUT", "PATCH"])
@require_jwt
def update_plant(principal, plant_id: str):
    _ensure_uuid(plant_id, "plant_id")
    body = _parse_json_body()
    category_ids = _parse_category_ids(body["category_ids"]) if "category_ids" in body else None
    plant = _svc().plants.update_plant(principal, plant_id, _plant_fields(body), category_ids)
    return _ok(plant, "plant successfully updated")


@api_blueprint.route("/plant/<plant_id>", methods=["DELETE"])
@require_jwt
def delete_plant(principal, plant_id: str):
    _ensure_uuid(plant_id, "plant_id")
    _svc().plants.delete_plant(principal, plant_id)
    return _ok(None, "successfully deleted")


@api_blueprint.route("/categories", methods=["GET"])
def list_categories():
    return _ok(_svc().plants.list_categories())


# ========= Users =========
@api_blueprint.route("/user", methods=["POST"])
def create_user():
    payload = _parse_json_body()
    try:
        user = _svc().users.add_user(payload)
    except DuplicateKeyError:
        current_app.logger.info("unsuccessful request, status code: 400 | duplicate account")
        return _ok(None, f"This email or username is already registered: {payload.get('email')}", 400)
    return _ok(user, "account successfully created", 201)


@api_blueprint.route("/user/username-check/is-taken", methods=["GET"])
def check_if_username_is_taken():
    username = (request.args.get("username") or "").strip()
    if not username:
        return _ok(None, "key, username, not found in url query parameters", 400)
    is_taken = _svc().users.check_if_username_is_taken(username)
    return _ok({"username": username, "is_taken": is_taken})


@api_blueprint.route("/user/<user_id>", methods=["GET"])
@require_jwt
def get_user(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    return _ok(_svc().users.get_user(user_id))


@api_blueprint.route("/user/<user_id>", methods=["PUT", "PATCH"])
@require_jwt
def update_user(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    user = _svc().users.update_user(principal, user_id, _parse_json_body())
    return _ok(user, "user data successfully updated")


@api_blueprint.route("/user/<user_id>/image", methods=["POST"])
@require_jwt
def update_user_profile_image(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    f = request.files.get("image")
    if f is None:
        return _ok(None, "file missing", 400)
    with _saved_images([f]) as paths:
        uri = _svc().users.update_user_profile_image(principal, user_id, paths[0], g.deadline)
    return _ok({"image_url": uri}, "profile image successfully updated")


@api_blueprint.route("/user/<user_id>", methods=["DELETE"])
@require_jwt
def delete_user(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    _svc().users.delete_user(principal, user_id)
    return _ok(None, "successfully deleted user")


# ========= Plant care log =========
def _care_entry_from_body(body: dict, *, require_plant: bool) -> dict:
    entry = {}
    if require_plant:
        plant_id = body.get("plant_id")
        if not plant_id:
            raise ValidationError("Field 'plant_id' is required")
        if not is_valid_uuid(plant_id):
            raise ValidationError("Invalid plant_id format")
        entry["plant_id"] = str(plant_id)
    if "notes" in body:
        entry["notes"] = "" if body["notes"] is None else str(body["notes"])
    for flag in ("was_watered", "was_fertilized"):
        if flag in body:
            entry[flag] = _parse_bool(body[flag], flag)
    if require_plant and body.get("date"):
        entry["date"] = _parse_datetime(body["date"], "date")
    return entry


@api_blueprint.route("/plant-care", methods=["POST"])
@require_jwt
def add_care_log_entry(principal):
    entry = _care_entry_from_body(_parse_json_body(), require_plant=True)
    inserted = _svc().care.add_care_log_entry(principal, entry)
    return _ok(inserted, "entry successfully added", 201)


@api_blueprint.route("/plant-care/<plant_id>", methods=["GET"])
@require_jwt
def get_care_log_entries(principal, plant_id: str):
    _ensure_uuid(plant_id, "plant_id")
    return _ok(_svc().care.get_care_log_entries(principal, plant_id))


@api_blueprint.route("/plant-care/<entry_id>", methods=["PUT", "PATCH"])
@require_jwt
def update_care_log_entry(principal, entry_id: str):
    _ensure_uuid(entry_id, "entry_id")
    entry = _care_entry_from_body(_parse_json_body(), require_plant=False)
    updated = _svc().care.update_care_log_entry(principal, entry_id, entry)
    return _ok(updated, "entry successfully updated")


@api_blueprint.route("/plant-care/<entry_id>", methods=["DELETE"])
@require_jwt
def delete_care_log_entry(principal, entry_id: str):
    _ensure_uuid(entry_id, "entry_id")
    _svc().care.delete_care_log_entry(principal, entry_id)
    return _ok(None, "entry successfully deleted")


@api_blueprint.route("/plant-care/user/<user_id>", methods=["GET"])
@require_jwt
def get_all_users_care_logs(principal, user_id: str):
    _ensure_uuid(user_id, "user_id")
    return _ok(_svc().care.get_all_users_care_logs(principal, user_id))
