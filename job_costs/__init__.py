"""
Job-cost reconciliation core
Classification, line allocation, per-entity rules, project scope and dedup
"""

from .models import AccountType, EntityType, ImportKey, JobTransaction, ProjectRecord
from .classifier import CLASSIFICATION_RULES, ClassificationTables, build_tables, classify

__all__ = [
    "AccountType",
    "EntityType",
    "ImportKey",
    "JobTransaction",
    "ProjectRecord",
    "CLASSIFICATION_RULES",
    "ClassificationTables",
    "build_tables",
    "classify",
]
