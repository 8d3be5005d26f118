"""Server-side reconciliation of pushed snapshots."""

from .merge import reconcile_estimate
from .service import EstimateNotFoundError, ReconciliationService, TenantResolutionError

__all__ = [
    "EstimateNotFoundError",
    "ReconciliationService",
    "TenantResolutionError",
    "reconcile_estimate",
]
