"""Actor and team context, identity lookup and severity adjustment."""

from ethicsgate.team.adjustment import AdjustedViolation, SeverityAdjuster, WeightingFactors
from ethicsgate.team.identity import (
    CommitIdentity,
    GitIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
)
from ethicsgate.team.registry import (
    UNKNOWN_ACTOR,
    ActorRegistry,
    DeveloperProfile,
    TeamContext,
    TeamSummary,
)

__all__ = [
    "AdjustedViolation", "SeverityAdjuster", "WeightingFactors",
    "CommitIdentity", "GitIdentityProvider", "IdentityProvider", "StaticIdentityProvider",
    "UNKNOWN_ACTOR", "ActorRegistry", "DeveloperProfile", "TeamContext", "TeamSummary",
]
