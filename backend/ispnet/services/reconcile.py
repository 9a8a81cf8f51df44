"""
Background reconciliation jobs run by the in-process scheduler.

- reconcile_utilization: rewrite every subnet's cached counters from the
  ledger and report any drift.
- sweep_stale_sync: flag router sync rows whose assigned address has not
  been confirmed against router state recently.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict

from sqlalchemy import select, update

from ispnet.config import settings
from ispnet.models.subnet import Subnet
from ispnet.models.sync_status import RouterSyncStatus
from ispnet.services import events
from ispnet.services.ledger import recompute_utilization, stale_assignments

logger = logging.getLogger(__name__)


async def reconcile_utilization(session_factory) -> Dict[str, int]:
    drifted = 0
    async with session_factory() as db:
        result = await db.execute(select(Subnet.id, Subnet.cidr, Subnet.used_ips, Subnet.available_ips))
        subnets = result.all()
        for subnet_id, cidr, used, available in subnets:
            counts = await recompute_utilization(db, subnet_id)
            if counts["used_ips"] != used or counts["available_ips"] != available:
                drifted += 1
                logger.warning(
                    "Subnet %s counters drifted: used %s->%s, available %s->%s",
                    cidr, used, counts["used_ips"], available, counts["available_ips"],
                )
        if drifted:
            events.record(
                db, "warning", "reconcile", "utilization_drift",
                f"Corrected utilization counters on {drifted} subnet(s)",
                details={"checked": len(subnets), "drifted": drifted},
            )
        await db.commit()
    logger.info("Utilization reconcile: %d subnets checked, %d corrected", len(subnets), drifted)
    return {"checked": len(subnets), "drifted": drifted}


async def sweep_stale_sync(session_factory, max_age_minutes: int = None, limit: int = 100) -> int:
    max_age = timedelta(minutes=max_age_minutes or settings.SYNC_STALE_MINUTES)
    async with session_factory() as db:
        stale = await stale_assignments(db, max_age, limit=limit)
        if not stale:
            return 0
        service_ids = [ip.customer_service_id for ip in stale]
        result = await db.execute(
            update(RouterSyncStatus)
            .where(
                RouterSyncStatus.customer_service_id.in_(service_ids),
                RouterSyncStatus.sync_status == "in_sync",
            )
            .values(sync_status="out_of_sync", last_checked=datetime.now(timezone.utc),
                    sync_message="Assignment not confirmed on router")
            .execution_options(synchronize_session=False)
        )
        flagged = result.rowcount or 0
        await db.commit()
    logger.info("Stale sync sweep: %d of %d unconfirmed assignments flagged out of sync", flagged, len(stale))
    return flagged
