"""egress-acp: interactive egress access control proxy.

Gates outbound HTTP(S) traffic of an untrusted client process with
allow/deny glob rules and escalates unknown destinations to a human operator.
"""

__version__ = "0.1.0"
