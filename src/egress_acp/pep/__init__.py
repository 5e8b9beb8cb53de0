"""Policy Enforcement Point (PEP) - enforce decisions on live traffic.

Following the context/PDP/PEP split:

- context/: Builds match targets from requests
- pdp/: Evaluates rules against targets
- pep/ (this module): Holds live policy, asks the user, forwards or rejects

Structure:
    store.py          - PolicyStore (copy-on-write snapshots)
    broker.py         - DecisionBroker (single-worker FIFO prompt queue)
    interceptor.py    - Interceptor (per-request state machine)
    reloader.py       - PolicyReloader (hot reload from policy.json)
    prompts.py        - Terminal and macOS decision providers
    applescript.py    - osascript helpers
"""

from egress_acp.pep.broker import DecisionBroker, DecisionProvider, DecisionRequest, ResponseSlot
from egress_acp.pep.interceptor import InterceptResult, Interceptor, RejectSignal, Terminal
from egress_acp.pep.prompts import (
    AppleScriptDecisionProvider,
    TerminalDecisionProvider,
    create_decision_provider,
)
from egress_acp.pep.reloader import PolicyReloader, ReloadResult
from egress_acp.pep.store import PolicyPersistence, PolicyStore

__all__ = [
    # Store
    "PolicyPersistence",
    "PolicyStore",
    # Broker
    "DecisionBroker",
    "DecisionProvider",
    "DecisionRequest",
    "ResponseSlot",
    # Interceptor
    "InterceptResult",
    "Interceptor",
    "RejectSignal",
    "Terminal",
    # Reload
    "PolicyReloader",
    "ReloadResult",
    # Providers
    "AppleScriptDecisionProvider",
    "TerminalDecisionProvider",
    "create_decision_provider",
]
