from .metadata import (
    FileRoleMetadataStore,
    InMemoryRoleMetadataStore,
    RoleMetadataEntry,
    RoleMetadataStore,
    RoleSelection,
    is_role_metadata_weak,
    merge_roles_from_agents,
    select_roles_with_gateway,
    upsert_role,
)
from .resolver import ResolutionResult, agent_slug, build_unique_agent_name, resolve_plan_assignments

__all__ = [
    "FileRoleMetadataStore",
    "InMemoryRoleMetadataStore",
    "ResolutionResult",
    "RoleMetadataEntry",
    "RoleMetadataStore",
    "RoleSelection",
    "agent_slug",
    "build_unique_agent_name",
    "is_role_metadata_weak",
    "merge_roles_from_agents",
    "resolve_plan_assignments",
    "select_roles_with_gateway",
    "upsert_role",
]
