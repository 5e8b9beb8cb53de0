"""Request context: inbound request model and target parsing.

Following the PDP/PEP split:

- context/ (this module): Builds match targets from requests
- pdp/: Evaluates rules against targets
- pep/: Enforces decisions (interceptor)
"""

from egress_acp.context.request import InboundRequest
from egress_acp.context.target import RequestTarget, parse_target, tunnel_target

__all__ = [
    "InboundRequest",
    "RequestTarget",
    "parse_target",
    "tunnel_target",
]
