from __future__ import annotations  # Public exports for template versioning

from .models import (
    CriteriaGroup,
    CriterionCreate,
    CriterionUpdate,
    GroupCreate,
    Template,
    TemplateCreate,
    TemplateSnapshot,
    TemplateStatus,
    TemplateUpdate,
    TemplateVersion,
)
from .store import TemplateStore

__all__ = [
    "CriteriaGroup",
    "CriterionCreate",
    "CriterionUpdate",
    "GroupCreate",
    "Template",
    "TemplateCreate",
    "TemplateSnapshot",
    "TemplateStatus",
    "TemplateStore",
    "TemplateUpdate",
    "TemplateVersion",
]
