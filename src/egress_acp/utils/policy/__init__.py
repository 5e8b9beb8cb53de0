"""Policy file I/O."""

from egress_acp.utils.policy.policy_helpers import (
    FilePolicyPersistence,
    create_default_policy_file,
    get_policy_path,
    load_policy,
    policy_exists,
    save_policy,
)

__all__ = [
    "FilePolicyPersistence",
    "create_default_policy_file",
    "get_policy_path",
    "load_policy",
    "policy_exists",
    "save_policy",
]
