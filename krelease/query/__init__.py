from krelease.query.resolver import (
    CurrentStateView,
    NamespaceGroup,
    QueryResolver,
    TenantCatalog,
    group_by_namespace,
)

__all__ = ["CurrentStateView", "NamespaceGroup", "QueryResolver", "TenantCatalog", "group_by_namespace"]
