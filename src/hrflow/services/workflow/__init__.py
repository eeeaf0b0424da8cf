"""Approval workflow: flow catalog, selection, route resolution and storage.

The engine lives in `hrflow.services.workflow.engine` and the SQL store in
`hrflow.services.workflow.sql_store`; both pull in sibling services and are
imported from their modules directly.
"""

from hrflow.services.workflow.catalog import (
    FlowCatalog,
    get_flow_catalog,
    reset_flow_catalog,
)
from hrflow.services.workflow.directory import (
    InMemoryOrganizationDirectory,
    OrganizationDirectory,
    get_organization_directory,
    reset_organization_directory,
)
from hrflow.services.workflow.errors import (
    ConcurrencyConflict,
    FlowNotFoundError,
    PersistenceFailure,
    RequestNotFoundError,
    ResolutionDegraded,
    StepNotFoundError,
    ValidationError,
    WorkflowError,
)
from hrflow.services.workflow.resolver import RouteResolver
from hrflow.services.workflow.selector import FlowSelector, evaluate_condition
from hrflow.services.workflow.store import (
    InMemoryRequestStore,
    RequestStore,
    matches_filters,
)

__all__ = [
    # Catalog
    "FlowCatalog",
    "get_flow_catalog",
    "reset_flow_catalog",
    # Directory
    "OrganizationDirectory",
    "InMemoryOrganizationDirectory",
    "get_organization_directory",
    "reset_organization_directory",
    # Selection and resolution
    "FlowSelector",
    "evaluate_condition",
    "RouteResolver",
    # Storage
    "RequestStore",
    "InMemoryRequestStore",
    "matches_filters",
    # Errors
    "WorkflowError",
    "ValidationError",
    "RequestNotFoundError",
    "StepNotFoundError",
    "FlowNotFoundError",
    "ResolutionDegraded",
    "PersistenceFailure",
    "ConcurrencyConflict",
]
