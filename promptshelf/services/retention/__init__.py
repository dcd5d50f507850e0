# promptshelf/services/retention/__init__.py
"""
Record lifecycle and data retention.

Records move Active -> Tombstoned -> Purged. A tombstone cascades down the
ownership graph; after the grace period the whole subtree is archived and
deleted.

Services:
- graph: Ownership edges between entity types
- states: Lifecycle state machine
- store: Transactional record access
- cascade: Tombstone / restore / purge / takedown of a root and its subtree
- sweeper: Scheduled age-out and grace-period passes
- reconciler: Orphan repair
- archive_service: Archive sink before purge
- policy_service: Per-type retention policies
- stats: Read-only reporting
- export_service: User data export
- service: Facade used by admin tooling
"""

from promptshelf.services.retention.archive_service import (
    ArchiveSink,
    NullArchiveSink,
    StorageArchiveSink,
    get_archive_sink,
    serialize_record,
)
from promptshelf.services.retention.cascade import CascadeEngine, CascadeResult
from promptshelf.services.retention.errors import (
    AncestorDeleted,
    ArchiveFailure,
    ConstraintViolation,
    GracePeriodNotElapsed,
    GraphConfigurationError,
    InvalidTransition,
    RecordNotFound,
    RetentionError,
    TransientStoreError,
)
from promptshelf.services.retention.graph import DEFAULT_GRAPH, Edge, EntityGraph, EntityType
from promptshelf.services.retention.policy_service import (
    DEFAULT_POLICIES,
    RetentionPolicy,
    get_policies,
    policy_for,
    resolve_policies,
)
from promptshelf.services.retention.reconciler import OrphanReconciler
from promptshelf.services.retention.service import RetentionService
from promptshelf.services.retention.states import LifecycleState
from promptshelf.services.retention.store import RecordFilter, RecordStore, UnitOfWork, build_accessors
from promptshelf.services.retention.sweeper import CleanupResult, RetentionSweeper

__all__ = [
    # Graph & states
    "EntityType",
    "Edge",
    "EntityGraph",
    "DEFAULT_GRAPH",
    "LifecycleState",
    # Store
    "RecordStore",
    "RecordFilter",
    "UnitOfWork",
    "build_accessors",
    # Policies
    "RetentionPolicy",
    "DEFAULT_POLICIES",
    "get_policies",
    "resolve_policies",
    "policy_for",
    # Archive
    "ArchiveSink",
    "StorageArchiveSink",
    "NullArchiveSink",
    "get_archive_sink",
    "serialize_record",
    # Engine
    "CascadeEngine",
    "CascadeResult",
    "RetentionSweeper",
    "CleanupResult",
    "OrphanReconciler",
    "RetentionService",
    # Errors
    "RetentionError",
    "GraphConfigurationError",
    "TransientStoreError",
    "ConstraintViolation",
    "InvalidTransition",
    "GracePeriodNotElapsed",
    "AncestorDeleted",
    "ArchiveFailure",
    "RecordNotFound",
]
