"""Persistence of the resource record."""

from __future__ import annotations

from .resources_storage import ResourcesStorage

__all__ = ["ResourcesStorage"]
