"""API v1 routers."""

from . import cas

__all__ = ["cas"]
