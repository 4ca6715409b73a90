"""Provisioning models.

Importing this package registers every table on ``Base.metadata`` so
Alembic and ``create_all`` see the full schema.
"""

from provisioner.models.project import Project
from provisioner.models.client import Client
from provisioner.models.entity_meta import EntityMeta
from provisioner.models.site import Site, SiteStatus
from provisioner.models.install_step import InstallStep, StepStatus, StepType
from provisioner.models.step_run import RunStatus, StepRun

__all__ = [
    "Project",
    "Client",
    "EntityMeta",
    "Site",
    "SiteStatus",
    "InstallStep",
    "StepStatus",
    "StepType",
    "RunStatus",
    "StepRun",
]
