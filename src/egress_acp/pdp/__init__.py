"""Policy Decision Point (PDP) - rule evaluation.

Following the context/PDP/PEP split:

- context/: Builds match targets from requests
- pdp/ (this module): Evaluates rules against targets
- pep/: Enforces decisions (interceptor, broker, store)

The PDP is stateless and side-effect free.
All I/O and enforcement happens in the PEP.

Structure:
    decision.py       - Decision enum (ALLOWED/DENIED/UNDECIDED)
    matcher.py        - Glob matching of patterns against targets
    engine.py         - evaluate() and classify()
    policy.py         - PolicyConfig (persisted) and PolicySnapshot (live)
    outcome.py        - Human decision outcomes

Policy file I/O is in utils/policy/policy_helpers.py.
"""

from egress_acp.pdp.decision import Decision
from egress_acp.pdp.engine import Classification, classify, evaluate
from egress_acp.pdp.matcher import escape_pattern, is_valid_pattern, match_pattern
from egress_acp.pdp.outcome import (
    AllowAlways,
    AllowOnce,
    DecisionOutcome,
    DenyAlways,
    DenyOnce,
    NoChoiceDismissed,
    ProviderError,
)
from egress_acp.pdp.policy import (
    PolicyConfig,
    PolicySnapshot,
    create_default_policy,
    validate_upstream_url,
)

__all__ = [
    # Decision
    "Decision",
    # Engine
    "Classification",
    "classify",
    "evaluate",
    "escape_pattern",
    "is_valid_pattern",
    "match_pattern",
    # Outcomes
    "AllowAlways",
    "AllowOnce",
    "DecisionOutcome",
    "DenyAlways",
    "DenyOnce",
    "NoChoiceDismissed",
    "ProviderError",
    # Policy models
    "PolicyConfig",
    "PolicySnapshot",
    "create_default_policy",
    "validate_upstream_url",
]
