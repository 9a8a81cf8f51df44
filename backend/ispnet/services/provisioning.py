"""
Provisioning Coordinator

Creates customer services on a router with an address from the ledger and
drives the suspend / terminate / reactivate lifecycle. Router configuration
outcomes reported back move a pending service to active or failed.
Releasing the address is always an explicit argument; suspension keeps it
unless asked otherwise.

Each operation runs in the caller's transaction and commits once at the end,
so a failed allocation leaves no half-created service behind.
"""
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.config import settings
from ispnet.errors import ActiveServiceExists, NotAvailable, NotFound, RouterUnavailable, ValidationFailed
from ispnet.models.customer import Customer, CustomerService, ServicePlan, ServiceStatus
from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import IPAddress, Subnet
from ispnet.models.sync_status import RouterSyncStatus
from ispnet.services import events, ledger

logger = logging.getLogger(__name__)

ALLOCATION_MODES = ("dynamic", "static")


async def _get_or_404(db: AsyncSession, model, obj_id: int, label: str):
    result = await db.execute(select(model).where(model.id == obj_id))
    obj = result.scalar_one_or_none()
    if not obj:
        raise NotFound(f"{label} not found", {"id": obj_id})
    return obj


async def provision_service(
    db: AsyncSession,
    customer_id: int,
    service_plan_id: int,
    router_id: int,
    allocation_mode: str = "dynamic",
    ip_address: Optional[str] = None,
    enforce_single_service: Optional[bool] = None,
) -> CustomerService:
    if allocation_mode not in ALLOCATION_MODES:
        raise ValidationFailed(f"allocation_mode must be one of {', '.join(ALLOCATION_MODES)}")
    if allocation_mode == "static" and not ip_address:
        raise ValidationFailed("ip_address is required for static allocation")
    if enforce_single_service is None:
        enforce_single_service = settings.ENFORCE_SINGLE_ACTIVE_SERVICE

    await _get_or_404(db, Customer, customer_id, "Customer")

    if enforce_single_service:
        existing = await db.execute(
            select(CustomerService.id).where(
                CustomerService.customer_id == customer_id,
                CustomerService.status.in_(ServiceStatus.LIVE),
            )
        )
        if existing.scalars().first():
            raise ActiveServiceExists("Customer already has an active or pending service")

    plan = await _get_or_404(db, ServicePlan, service_plan_id, "Service plan")

    router = (await db.execute(select(NetworkDevice).where(NetworkDevice.id == router_id))).scalar_one_or_none()
    if not router or router.status != "online":
        raise RouterUnavailable("Router not found or not connected", {"router_id": router_id})

    if allocation_mode == "static":
        owner = await db.execute(
            select(Subnet.id)
            .join(IPAddress, IPAddress.subnet_id == Subnet.id)
            .where(IPAddress.address == ip_address.strip(), Subnet.router_id == router_id)
        )
        subnet_id = owner.scalars().first()
        if subnet_id is None:
            raise NotAvailable(
                f"IP address {ip_address} does not belong to router {router.name} subnets",
                {"ip_address": ip_address, "router_id": router_id},
            )

    service = CustomerService(
        customer_id=customer_id,
        service_plan_id=service_plan_id,
        router_id=router_id,
        monthly_fee=plan.price,
        status=ServiceStatus.PENDING,
        start_date=date.today(),
    )
    db.add(service)
    await db.flush()

    try:
        if allocation_mode == "dynamic":
            address = await ledger.assign_address(db, service.id, router_id=router_id)
        else:
            address = await ledger.assign_address(db, service.id, subnet_id=subnet_id, address=ip_address)
    except Exception:
        await db.rollback()
        raise

    db.add(RouterSyncStatus(
        router_id=router_id,
        customer_service_id=service.id,
        ip_address_id=address.id,
        sync_status="pending",
        retry_count=0,
    ))
    events.record(
        db, "info", "provisioning", "provisioning_requested",
        f"Service provisioning requested for customer {customer_id} on {router.name} with {address.address}",
        resource_type="service", resource_id=service.id,
        details={"router_id": router_id, "allocation_mode": allocation_mode, "ip_address": address.address},
    )
    await db.commit()
    await db.refresh(service)
    logger.info("Provisioned service %s for customer %s (%s)", service.id, customer_id, address.address)
    return service


async def _set_status(
    db: AsyncSession,
    service_id: int,
    status: str,
    release_ip: bool,
    reason: Optional[str],
    event_type: str,
) -> tuple:
    service = await ledger.get_service(db, service_id)
    released = None
    if release_ip:
        released = await ledger.release_address(db, service_id=service_id, reason=reason)
    service.status = status
    service.updated_at = datetime.now(timezone.utc)
    events.record(
        db, "info", "provisioning", event_type,
        f"Service {service_id} {status}" + (f": {reason}" if reason else ""),
        resource_type="service", resource_id=service_id,
        details={"release_ip": release_ip, "released": released.address if released else None},
    )
    await db.commit()
    await db.refresh(service)
    return service, released


async def suspend_service(db: AsyncSession, service_id: int, release_ip: bool = False, reason: Optional[str] = None):
    service = await ledger.get_service(db, service_id)
    if service.status == ServiceStatus.TERMINATED:
        raise ValidationFailed("Cannot suspend a terminated service")
    return await _set_status(db, service_id, ServiceStatus.SUSPENDED, release_ip, reason, "service_suspended")


async def terminate_service(db: AsyncSession, service_id: int, release_ip: bool = True, reason: Optional[str] = None):
    return await _set_status(db, service_id, ServiceStatus.TERMINATED, release_ip, reason, "service_terminated")


async def reactivate_service(db: AsyncSession, service_id: int):
    service = await ledger.get_service(db, service_id)
    if service.status != ServiceStatus.SUSPENDED:
        raise ValidationFailed(f"Only suspended services can be reactivated (status is {service.status})")
    service, _ = await _set_status(db, service_id, ServiceStatus.ACTIVE, False, None, "service_reactivated")
    if not service.ip_address:
        logger.warning("Service %s reactivated without an IP address", service_id)
    return service


async def record_sync_result(db: AsyncSession, service_id: int, success: bool, message: Optional[str] = None):
    """
    Apply the outcome of pushing a service's configuration to its router.

    Success activates the service and marks its sync row ``in_sync``; a
    failure marks the service ``failed`` and the row ``out_of_sync`` with the
    router's message and one more retry counted. Failed services may report
    again after a retry. Returns (service, sync_row).
    """
    service = await ledger.get_service(db, service_id)
    if service.status in (ServiceStatus.SUSPENDED, ServiceStatus.TERMINATED):
        raise ValidationFailed(f"Cannot record router sync for a {service.status} service")
    if service.router_id is None:
        raise ValidationFailed("Service is not provisioned on a router")

    sync = (await db.execute(
        select(RouterSyncStatus).where(
            RouterSyncStatus.customer_service_id == service_id,
            RouterSyncStatus.router_id == service.router_id,
        )
    )).scalar_one_or_none()
    address = (await db.execute(
        select(IPAddress).where(IPAddress.customer_service_id == service_id)
    )).scalars().first()
    if sync is None:
        sync = RouterSyncStatus(
            router_id=service.router_id,
            customer_service_id=service_id,
            ip_address_id=address.id if address else None,
            retry_count=0,
        )
        db.add(sync)

    now = datetime.now(timezone.utc)
    sync.last_checked = now
    if success:
        service.status = ServiceStatus.ACTIVE
        sync.sync_status = "in_sync"
        sync.sync_message = message or "Service configured successfully"
        sync.last_synced = now
        if address is not None:
            await ledger.mark_synced(db, [address.id])
        level, event_type = "info", "service_activated"
        text = f"Service {service_id} activated on router {service.router_id}"
    else:
        service.status = ServiceStatus.FAILED
        sync.sync_status = "out_of_sync"
        sync.sync_message = message or "Router configuration failed"
        sync.retry_count = (sync.retry_count or 0) + 1
        level, event_type = "error", "provisioning_failed"
        text = f"Failed to configure service {service_id}: {sync.sync_message}"
    service.updated_at = now

    events.record(
        db, level, "provisioning", event_type, text,
        resource_type="service", resource_id=service_id,
        details={"router_id": service.router_id, "retry_count": sync.retry_count, "message": sync.sync_message},
    )
    await db.commit()
    await db.refresh(service)
    await db.refresh(sync)
    if success:
        logger.info("Service %s in sync on router %s", service_id, service.router_id)
    else:
        logger.warning("Service %s out of sync on router %s (retry %s): %s",
                       service_id, service.router_id, sync.retry_count, sync.sync_message)
    return service, sync


async def release_customer_addresses(db: AsyncSession, customer_id: int, reason: str = "Customer terminated") -> List[IPAddress]:
    """Release every address held by any of the customer's services."""
    await _get_or_404(db, Customer, customer_id, "Customer")
    result = await db.execute(
        select(CustomerService.id).where(CustomerService.customer_id == customer_id).order_by(CustomerService.id)
    )
    released = []
    for service_id in result.scalars().all():
        address = await ledger.release_address(db, service_id=service_id, reason=reason)
        if address is not None:
            released.append(address)
    await db.commit()
    logger.info("Released %d addresses for customer %s", len(released), customer_id)
    return released


async def list_services(db: AsyncSession, router_id: Optional[int] = None, status: Optional[str] = None):
    query = (
        select(CustomerService, NetworkDevice.name, ServicePlan.name)
        .outerjoin(NetworkDevice, NetworkDevice.id == CustomerService.router_id)
        .outerjoin(ServicePlan, ServicePlan.id == CustomerService.service_plan_id)
        .where(CustomerService.router_id.isnot(None))
        .order_by(CustomerService.created_at.desc(), CustomerService.id.desc())
    )
    if router_id is not None:
        query = query.where(CustomerService.router_id == router_id)
    if status:
        query = query.where(CustomerService.status == status)
    result = await db.execute(query)
    return result.all()
