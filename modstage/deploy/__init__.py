"""Deployment of installed packages into a live game directory."""

from .engine import LEDGER_NAME, DeployMethod, DeploymentReport, deploy_units
from .layout import (
    LOADER_PREFIX,
    DeployEntry,
    DeploymentLayout,
    DeploymentUnit,
    is_loader_binary,
    requires_copy,
    resolve_deployment,
    strip_data_component,
)

__all__ = [
    "LEDGER_NAME",
    "LOADER_PREFIX",
    "DeployMethod",
    "DeploymentReport",
    "DeployEntry",
    "DeploymentLayout",
    "DeploymentUnit",
    "deploy_units",
    "is_loader_binary",
    "requires_copy",
    "resolve_deployment",
    "strip_data_component",
]
