"""Payload installation: strategy chain, presence probes and CSP mitigation."""

from .verification import PROBE_SCRIPT, PresenceProbe, probe, probe_arguments
from .strategies import (
    DEFAULT_CHUNK_THRESHOLD,
    DEFAULT_CHUNK_SIZE,
    InjectionStrategy,
    DirectStrategy,
    ScriptElementStrategy,
    DeferredTimerStrategy,
    ChunkedStrategy,
    InjectionStrategyChain,
    default_strategies,
)
from .csp import (
    PERMISSIVE_POLICY,
    CSPMitigationResult,
    CSPMitigator,
    parse_policy,
    policy_allows_connect,
)

__all__ = [
    # Verification
    "PROBE_SCRIPT",
    "PresenceProbe",
    "probe",
    "probe_arguments",

    # Strategies
    "DEFAULT_CHUNK_THRESHOLD",
    "DEFAULT_CHUNK_SIZE",
    "InjectionStrategy",
    "DirectStrategy",
    "ScriptElementStrategy",
    "DeferredTimerStrategy",
    "ChunkedStrategy",
    "InjectionStrategyChain",
    "default_strategies",

    # CSP
    "PERMISSIVE_POLICY",
    "CSPMitigationResult",
    "CSPMitigator",
    "parse_policy",
    "policy_allows_connect",
]
