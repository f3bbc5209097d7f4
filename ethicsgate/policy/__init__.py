"""Policy loading, validation, merging and live reload."""

from ethicsgate.policy.store import (
    Policy,
    PolicyLoadError,
    PolicyLoadResult,
    PolicyStore,
    create_default_policy,
    export_policy,
    merge_policies,
    read_policy,
)

__all__ = [
    "Policy", "PolicyLoadError", "PolicyLoadResult", "PolicyStore",
    "create_default_policy", "export_policy", "merge_policies", "read_policy",
]
