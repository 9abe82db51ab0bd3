"""Sync layer: collections, reconciliation, loading, mutations and live updates."""

from syncspine.sync.gateway import MutationGateway, Query
from syncspine.sync.loader import CollectionLoader
from syncspine.sync.manager import DatabaseManager
from syncspine.sync.reconciler import LocalStateReconciler, Operation
from syncspine.sync.state import CollectionStatus, CollectionStore
from syncspine.sync.subscriptions import (
    SubscriptionHandle,
    SubscriptionRegistry,
    SubscriptionState,
)

__all__ = [
    "CollectionLoader",
    "CollectionStatus",
    "CollectionStore",
    "DatabaseManager",
    "LocalStateReconciler",
    "MutationGateway",
    "Operation",
    "Query",
    "SubscriptionHandle",
    "SubscriptionRegistry",
    "SubscriptionState",
]
