"""Routers package."""

from . import (
    health,
    auth,
    payments,
    tokens,
)
