"""Read and write access to the authorization databases."""

from .access import StoreAccessReport, check_store_access, check_store_access_async
from .helper import HelperLocator, default_candidates
from .notifier import StoreNotifier
from .reader import DirectQuery, PermissionStore, ScriptedQuery
from .writer import DirectStoreMutation, HelperMutation, PermissionMutator

__all__ = [
    "DirectQuery",
    "DirectStoreMutation",
    "HelperLocator",
    "HelperMutation",
    "PermissionMutator",
    "PermissionStore",
    "ScriptedQuery",
    "StoreAccessReport",
    "StoreNotifier",
    "check_store_access",
    "check_store_access_async",
    "default_candidates",
]
