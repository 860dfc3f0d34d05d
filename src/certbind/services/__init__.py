"""certbind service layer.

The authorization and issuance flows talk to the CA; the
reconciliation engine decides what to issue and renew and writes the
results to the registry.
"""

from certbind.services.authorization import AuthorizationFlow, AuthorizationResult
from certbind.services.issuance import IssuanceFlow
from certbind.services.reconcile import (
    DomainOutcome,
    ReconciliationEngine,
    ReconciliationPlan,
    Report,
    plan,
)

__all__ = [
    "AuthorizationFlow",
    "AuthorizationResult",
    "DomainOutcome",
    "IssuanceFlow",
    "ReconciliationEngine",
    "ReconciliationPlan",
    "Report",
    "plan",
]
