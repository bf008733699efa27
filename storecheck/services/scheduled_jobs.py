"""
StoreCheck
Scheduled Jobs.

Maintenance sweeps runnable from cron (``flask run-job <name>``) or the
jobs endpoint.

Jobs:
    - cross_validation_expiry: expires pending reconciliations past the TTL
    - action_plan_overdue_scan: flips plans past their deadline to overdue
    - outbox_dispatch: delivers pending/failed outbound events
"""

from __future__ import annotations

import logging
from typing import Any

from storecheck.services import event_outbox
from storecheck.services.nonconformity import check_overdue_plans
from storecheck.services.reconciliation import expire_stale_validations
from storecheck.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Cross-validation expiry
# ═══════════════════════════════════════════════════════════════════════════

@register_job("cross_validation_expiry")
def expire_cross_validations(app) -> dict[str, Any]:
    """Expire pending cross-validations older than the configured TTL."""
    expired = expire_stale_validations()
    dispatched = event_outbox.dispatch_pending()
    return {"expired": expired, **dispatched}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Overdue action plans
# ═══════════════════════════════════════════════════════════════════════════

@register_job("action_plan_overdue_scan")
def scan_overdue_plans(app) -> dict[str, Any]:
    """Mark open action plans past their deadline as overdue and notify."""
    overdue = check_overdue_plans()
    dispatched = event_outbox.dispatch_pending()
    return {"overdue": overdue, **dispatched}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Outbox dispatch
# ═══════════════════════════════════════════════════════════════════════════

@register_job("outbox_dispatch")
def dispatch_outbox(app) -> dict[str, Any]:
    """Deliver pending and previously failed outbound events."""
    return event_outbox.dispatch_pending(limit=app.config.get("OUTBOX_DISPATCH_BATCH", 500))
