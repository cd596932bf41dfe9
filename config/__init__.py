"""Configuration package for the coaching evaluation services."""
from .registry import bind_formula, get_formula, unbind_formula
from .settings import Settings, settings

__all__ = [
    "bind_formula",
    "get_formula",
    "unbind_formula",
    "Settings",
    "settings",
]
