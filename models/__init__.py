# models/__init__.py
from .base import Base  # noqa: F401
from .entities import (  # noqa: F401
    User, Plant, PlantImage, Category, CareLogEntry, RefreshToken,
    plant_category,
)
