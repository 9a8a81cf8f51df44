"""
Allocation Ledger

Per-address status tracking for every generated pool. All status transitions
are single conditional UPDATE ... RETURNING statements keyed on the current
status, so two requests racing for the same address cannot both win; the
loser sees zero rows and gets NotAvailable / PoolExhausted.

Functions here flush but never commit; the caller owns the transaction.
"""
import ipaddress
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.errors import NotAvailable, NotFound, PoolExhausted, ValidationFailed
from ispnet.models.customer import CustomerService
from ispnet.models.subnet import AddressStatus, IPAddress, Subnet
from ispnet.models.sync_status import RouterSyncStatus
from ispnet.services import events

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _conditional_update(db: AsyncSession, stmt, values: dict) -> Optional[IPAddress]:
    stmt = (
        stmt.values(**values)
        .returning(IPAddress)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_service(db: AsyncSession, service_id: int) -> CustomerService:
    result = await db.execute(select(CustomerService).where(CustomerService.id == service_id))
    service = result.scalar_one_or_none()
    if not service:
        raise NotFound("Service not found", {"service_id": service_id})
    return service


async def get_address(db: AsyncSession, address_id: int) -> IPAddress:
    result = await db.execute(select(IPAddress).where(IPAddress.id == address_id))
    address = result.scalar_one_or_none()
    if not address:
        raise NotFound("IP address not found", {"id": address_id})
    return address


async def get_address_by_value(db: AsyncSession, value: str) -> IPAddress:
    result = await db.execute(
        select(IPAddress).where(IPAddress.address == value).execution_options(populate_existing=True)
    )
    address = result.scalar_one_or_none()
    if not address:
        raise NotFound("IP address not found", {"ip_address": value})
    return address


def _check_ipv4(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value.strip()))
    except ValueError:
        raise ValidationFailed(f"Invalid IPv4 address: {value}")


async def assign_address(
    db: AsyncSession,
    service_id: int,
    subnet_id: Optional[int] = None,
    address: Optional[str] = None,
    router_id: Optional[int] = None,
) -> IPAddress:
    """
    Bind an available address to a customer service.

    With ``address`` the exact address is claimed (optionally constrained to
    ``subnet_id`` / ``router_id``). Without it, the numerically lowest
    available address of ``subnet_id`` is taken, or of the router's active
    subnets when only ``router_id`` is given.
    """
    service = await get_service(db, service_id)

    held = (
        await db.execute(select(IPAddress.address).where(IPAddress.customer_service_id == service_id))
    ).scalars().first()
    if held:
        raise NotAvailable(f"Service {service_id} already holds {held}", {"ip_address": held})

    if subnet_id is not None:
        subnet = (await db.execute(select(Subnet).where(Subnet.id == subnet_id))).scalar_one_or_none()
        if not subnet:
            raise NotFound("Subnet not found", {"subnet_id": subnet_id})
        if subnet.status != "active":
            raise NotAvailable(f"Subnet {subnet.cidr} is not active", {"subnet_id": subnet_id})

    values = {
        "status": AddressStatus.ASSIGNED,
        "customer_service_id": service_id,
        "assigned_at": _now(),
        "last_synced": None,
    }

    if address:
        address = _check_ipv4(address)
        stmt = update(IPAddress).where(
            IPAddress.address == address,
            IPAddress.status == AddressStatus.AVAILABLE,
        )
        if subnet_id is not None:
            stmt = stmt.where(IPAddress.subnet_id == subnet_id)
        if router_id is not None:
            stmt = stmt.where(IPAddress.subnet_id.in_(select(Subnet.id).where(Subnet.router_id == router_id)))
        claimed = await _conditional_update(db, stmt, values)
        if claimed is None:
            raise NotAvailable("IP address not available or not found", {"ip_address": address})
    else:
        if subnet_id is None and router_id is None:
            raise ValidationFailed("subnet_id is required for auto-assignment")
        candidate = select(IPAddress.id).where(IPAddress.status == AddressStatus.AVAILABLE)
        if subnet_id is not None:
            candidate = candidate.where(IPAddress.subnet_id == subnet_id)
        else:
            candidate = candidate.join(Subnet, Subnet.id == IPAddress.subnet_id).where(
                Subnet.router_id == router_id, Subnet.status == "active"
            )
        # Uncorrelated: the subquery picks exactly one row of the whole pool.
        candidate = (
            candidate.order_by(IPAddress.ip_int)
            .limit(1)
            .with_for_update(skip_locked=True, of=IPAddress)
            .correlate(None)
            .scalar_subquery()
        )
        stmt = update(IPAddress).where(IPAddress.id == candidate, IPAddress.status == AddressStatus.AVAILABLE)
        claimed = await _conditional_update(db, stmt, values)
        if claimed is None:
            scope = f"subnet {subnet_id}" if subnet_id is not None else f"router {router_id} subnets"
            raise PoolExhausted(
                f"No available IP addresses in {scope}",
                {"subnet_id": subnet_id, "router_id": router_id},
            )

    service.ip_address = claimed.address
    await db.execute(
        update(RouterSyncStatus)
        .where(RouterSyncStatus.customer_service_id == service_id)
        .values(ip_address_id=claimed.id, sync_status="pending", last_checked=_now())
    )
    await recompute_utilization(db, claimed.subnet_id)

    events.record(
        db, "info", "ip_management", "ip_assigned",
        f"IP address {claimed.address} assigned to service {service_id}",
        resource_type="ip_address", resource_id=claimed.id,
        details={"service_id": service_id, "customer_id": service.customer_id, "subnet_id": claimed.subnet_id},
    )
    logger.info("Assigned %s to service %s", claimed.address, service_id)
    return claimed


async def release_address(
    db: AsyncSession,
    service_id: Optional[int] = None,
    address: Optional[str] = None,
    reason: Optional[str] = None,
) -> Optional[IPAddress]:
    """
    Return an address to the pool.

    Releasing an address that is already available is a successful no-op.
    Releasing by a service that holds no address returns None.
    """
    if service_id is None and not address:
        raise ValidationFailed("service_id or ip_address is required")

    if address:
        row = await get_address_by_value(db, _check_ipv4(address))
    else:
        service = await get_service(db, service_id)
        row = (
            await db.execute(select(IPAddress).where(IPAddress.customer_service_id == service_id))
        ).scalars().first()
        if row is None:
            if service.ip_address:
                logger.warning("Service %s had stale ip_address %s with no ledger entry", service_id, service.ip_address)
                service.ip_address = None
            return None

    owner = row.customer_service_id
    stmt = update(IPAddress).where(IPAddress.id == row.id, IPAddress.status != AddressStatus.AVAILABLE)
    released = await _conditional_update(db, stmt, {
        "status": AddressStatus.AVAILABLE,
        "customer_service_id": None,
        "assigned_at": None,
        "last_synced": None,
        "notes": None,
    })
    if released is None:
        return await get_address_by_value(db, row.address)

    if owner is not None:
        await db.execute(
            update(CustomerService)
            .where(CustomerService.id == owner, CustomerService.ip_address == released.address)
            .values(ip_address=None)
        )
        await db.execute(
            update(RouterSyncStatus)
            .where(RouterSyncStatus.customer_service_id == owner)
            .values(sync_status="released", last_checked=_now())
        )
    await recompute_utilization(db, released.subnet_id)

    events.record(
        db, "info", "ip_management", "ip_released",
        f"IP address {released.address} released",
        resource_type="ip_address", resource_id=released.id,
        details={"service_id": owner, "reason": reason},
    )
    logger.info("Released %s (service %s)", released.address, owner)
    return released


async def reserve_address(db: AsyncSession, address: str, notes: Optional[str] = None) -> IPAddress:
    """Take an available address out of the dynamic pool."""
    row = await get_address_by_value(db, _check_ipv4(address))
    stmt = update(IPAddress).where(IPAddress.id == row.id, IPAddress.status == AddressStatus.AVAILABLE)
    reserved = await _conditional_update(db, stmt, {"status": AddressStatus.RESERVED, "notes": notes})
    if reserved is None:
        raise NotAvailable(f"IP address {row.address} is {row.status}", {"ip_address": row.address})
    await recompute_utilization(db, reserved.subnet_id)
    events.record(
        db, "info", "ip_management", "ip_reserved",
        f"IP address {reserved.address} reserved",
        resource_type="ip_address", resource_id=reserved.id, details={"notes": notes},
    )
    return reserved


async def recompute_utilization(db: AsyncSession, subnet_id: int) -> Dict[str, int]:
    """Rewrite the subnet's cached counters from per-address status."""
    result = await db.execute(
        select(IPAddress.status, func.count(IPAddress.id))
        .where(IPAddress.subnet_id == subnet_id)
        .group_by(IPAddress.status)
    )
    counts = {status: count for status, count in result.all()}
    values = {
        "total_ips": sum(counts.values()),
        "used_ips": counts.get(AddressStatus.ASSIGNED, 0),
        "reserved_ips": counts.get(AddressStatus.RESERVED, 0),
        "available_ips": counts.get(AddressStatus.AVAILABLE, 0),
    }
    await db.execute(update(Subnet).where(Subnet.id == subnet_id).values(**values))
    return values


def _listing_query(
    status: Optional[str] = None,
    subnet_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    router_id: Optional[int] = None,
    active_only: bool = False,
):
    query = (
        select(IPAddress, Subnet.cidr, Subnet.router_id, CustomerService.customer_id)
        .join(Subnet, Subnet.id == IPAddress.subnet_id)
        .outerjoin(CustomerService, CustomerService.id == IPAddress.customer_service_id)
    )
    if status:
        query = query.where(IPAddress.status == status)
    if subnet_id is not None:
        query = query.where(IPAddress.subnet_id == subnet_id)
    if customer_id is not None:
        query = query.where(CustomerService.customer_id == customer_id)
    if router_id is not None:
        query = query.where(Subnet.router_id == router_id)
    if active_only:
        query = query.where(Subnet.status == "active")
    return query


async def list_addresses(
    db: AsyncSession,
    status: Optional[str] = None,
    subnet_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    router_id: Optional[int] = None,
    limit: int = 500,
    offset: int = 0,
    active_only: bool = False,
) -> List[dict]:
    query = _listing_query(status, subnet_id, customer_id, router_id, active_only)
    query = query.order_by(IPAddress.ip_int).offset(offset).limit(limit)
    result = await db.execute(query)
    return [
        {
            "id": ip.id,
            "address": ip.address,
            "subnet_id": ip.subnet_id,
            "subnet_cidr": cidr,
            "router_id": rid,
            "status": ip.status,
            "customer_service_id": ip.customer_service_id,
            "customer_id": cid,
            "assigned_at": ip.assigned_at,
            "last_synced": ip.last_synced,
            "notes": ip.notes,
        }
        for ip, cidr, rid, cid in result.all()
    ]


async def available_addresses_for_router(db: AsyncSession, router_id: int, limit: int = 100) -> List[dict]:
    """Free addresses on the router's active subnets, lowest first."""
    return await list_addresses(db, status=AddressStatus.AVAILABLE, router_id=router_id, active_only=True, limit=limit)


async def stale_assignments(db: AsyncSession, max_age: timedelta, limit: int = 100) -> Sequence[IPAddress]:
    """Assigned addresses not confirmed against router state within max_age."""
    cutoff = _now() - max_age
    result = await db.execute(
        select(IPAddress)
        .where(
            IPAddress.status == AddressStatus.ASSIGNED,
            (IPAddress.last_synced.is_(None)) | (IPAddress.last_synced < cutoff),
        )
        .order_by(IPAddress.last_synced.is_not(None), IPAddress.last_synced, IPAddress.id)
        .limit(limit)
    )
    return result.scalars().all()


async def mark_synced(db: AsyncSession, address_ids: Sequence[int]) -> int:
    """Record that the router confirmed these assignments; the owning services' sync rows are touched too."""
    if not address_ids:
        return 0
    now = _now()
    result = await db.execute(
        update(IPAddress)
        .where(IPAddress.id.in_(address_ids), IPAddress.status == AddressStatus.ASSIGNED)
        .values(last_synced=now)
        .execution_options(synchronize_session=False)
    )
    owners = select(IPAddress.customer_service_id).where(
        IPAddress.id.in_(address_ids),
        IPAddress.status == AddressStatus.ASSIGNED,
        IPAddress.customer_service_id.isnot(None),
    )
    await db.execute(
        update(RouterSyncStatus)
        .where(RouterSyncStatus.customer_service_id.in_(owners))
        .values(last_synced=now, last_checked=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
