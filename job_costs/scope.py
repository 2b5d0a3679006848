"""
Project scope filter: keep rows whose job belongs to a visible project
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from job_costs.allocator import job_display_name
from job_costs.models import JobTransaction, ProjectRecord

logger = logging.getLogger(__name__)


def normalize_job_name(name: Optional[str]) -> str:
    return (name or '').strip().lower()


def is_visible(project: ProjectRecord) -> bool:
    """Visible unless explicitly out of scope or explicitly hidden"""
    return project.include_in_job_costs is not False and project.visible is not False


@dataclass(frozen=True)
class ProjectScope:
    """Allow-sets of external job ids and normalized job display names"""

    job_ids: FrozenSet[str] = frozenset()
    job_names: FrozenSet[str] = frozenset()


def build_scope(projects: Iterable[ProjectRecord]) -> ProjectScope:
    job_ids = set()
    job_names = set()
    for project in projects:
        if not is_visible(project):
            continue
        if project.external_id:
            job_ids.add(project.external_id)
        full_name = project.external_name or project.name
        # Rows carry the job part of "Customer:Job" names
        for name in (normalize_job_name(full_name), normalize_job_name(job_display_name(full_name))):
            if name:
                job_names.add(name)

    logger.info(f"Project scope: {len(job_ids)} job ids, {len(job_names)} job names")
    return ProjectScope(frozenset(job_ids), frozenset(job_names))


def filter_rows(rows: List[JobTransaction], scope: ProjectScope,
                include_unassigned: bool = False) -> List[JobTransaction]:
    """
    Keep rows attributed to an in-scope job

    Rows are matched by external job id. Only when no row in the dataset
    carries an id are display names matched instead. Rows with no job
    reference at all pass only with include_unassigned.
    """
    match_by_name = not any(row.project_external_id for row in rows)
    kept = []
    for row in rows:
        if row.project_external_id:
            if row.project_external_id in scope.job_ids:
                kept.append(row)
        elif row.project_name and match_by_name:
            if normalize_job_name(row.project_name) in scope.job_names:
                kept.append(row)
        elif not row.project_name and include_unassigned:
            kept.append(row)
    return kept
