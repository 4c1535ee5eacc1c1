"""Control-plane CLI access."""

from __future__ import annotations

from .cli import ControlPlaneClient

__all__ = ["ControlPlaneClient"]
