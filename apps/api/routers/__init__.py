"""Routers package."""

from . import (
    health,
    users,
    pricing,
    expertise,
    billing,
)
