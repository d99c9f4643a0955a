"""
Celery tasks for the payments app.

Both tasks are scheduled through ``CELERY_BEAT_SCHEDULE``: due Stripe
payouts are executed hourly and stale pending payments are expired every
ten minutes so their inventory holds return to sale.
"""
from __future__ import annotations

import logging

from celery import shared_task

from .gateway import get_gateway
from .ledger import PaymentLedger
from .payouts import PayoutScheduler

logger = logging.getLogger(__name__)


@shared_task
def process_due_payouts(event_id: int | None = None) -> dict:
    """Transfer every pending stripe payout whose scheduled date has passed.

    Args:
        event_id: Optional event to restrict the run to.
    """
    outcomes = PayoutScheduler(gateway=get_gateway()).process_due(event_id=event_id)
    result = {
        "processed": len(outcomes),
        "paid": sum(1 for o in outcomes if o.status == "paid"),
        "failed": sum(1 for o in outcomes if o.status == "failed"),
    }
    if result["failed"]:
        logger.warning("Payout run finished with %s failures", result["failed"])
    return result


@shared_task
def expire_stale_payments() -> int:
    return PaymentLedger(gateway=get_gateway()).expire_stale()
