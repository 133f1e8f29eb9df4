# SQLAlchemy models
from .base import Base
from .vignette import VignetteProgressRow, VignetteSessionRow

__all__ = [
    "Base",
    "VignetteProgressRow",
    "VignetteSessionRow",
]
