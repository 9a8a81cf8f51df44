"""
Subnet lifecycle: create (with overlap gate and automatic pool generation),
update and delete.
"""
import ipaddress
import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.config import settings
from ispnet.errors import (
    HasDependents, NotFound, OverlapConflict, SubnetTooLarge, ValidationFailed
)
from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import AddressStatus, IPAddress, Subnet
from ispnet.services import events
from ispnet.services.address_space import check_generation_policy, generate_addresses
from ispnet.services.cidr import network_bounds, require_valid_cidr
from ispnet.services.overlap import find_overlaps

logger = logging.getLogger(__name__)


async def get_subnet(db: AsyncSession, subnet_id: int) -> Subnet:
    result = await db.execute(select(Subnet).where(Subnet.id == subnet_id))
    subnet = result.scalar_one_or_none()
    if not subnet:
        raise NotFound("Subnet not found", {"subnet_id": subnet_id})
    return subnet


async def _require_router(db: AsyncSession, router_id: int) -> NetworkDevice:
    result = await db.execute(select(NetworkDevice).where(NetworkDevice.id == router_id))
    router = result.scalar_one_or_none()
    if not router:
        raise NotFound("Router not found", {"router_id": router_id})
    return router


def _check_gateway(gateway: Optional[str], network: ipaddress.IPv4Network) -> str:
    if not gateway:
        return str(network.network_address + 1)
    try:
        gw = ipaddress.IPv4Address(gateway)
    except ValueError:
        raise ValidationFailed(f"Invalid gateway address: {gateway}")
    if gw not in network or gw in (network.network_address, network.broadcast_address):
        raise ValidationFailed(f"Gateway {gateway} is not a usable host of {network}")
    return str(gw)


async def _check_overlaps(db: AsyncSession, network: ipaddress.IPv4Network, exclude_id: Optional[int] = None):
    conflicts = await find_overlaps(db, network, exclude_subnet_id=exclude_id)
    if conflicts:
        raise OverlapConflict(
            f"This subnet overlaps with {len(conflicts)} existing subnet(s)",
            {"subnets": [c.to_dict() for c in conflicts]},
        )


async def create_subnet(db: AsyncSession, data: dict, auto_generate: Optional[bool] = None) -> tuple:
    """Returns (subnet, generated_count)."""
    network = require_valid_cidr(
        data["cidr"], min_prefix=settings.SUBNET_MIN_PREFIX, max_prefix=settings.SUBNET_MAX_PREFIX
    )
    router = await _require_router(db, data["router_id"])
    await _check_overlaps(db, network)

    first, last = network_bounds(network)
    subnet = Subnet(
        name=data.get("name"),
        cidr=str(network),
        network_int=first,
        broadcast_int=last,
        prefix_length=network.prefixlen,
        router_id=router.id,
        gateway=_check_gateway(data.get("gateway"), network),
        vlan_id=data.get("vlan_id"),
        dns_primary=data.get("dns_primary"),
        dns_secondary=data.get("dns_secondary"),
        description=data.get("description"),
        allocation_mode=data.get("allocation_mode") or "dynamic",
        status=data.get("status") or "active",
    )
    db.add(subnet)
    await db.flush()
    events.record(
        db, "info", "subnets", "subnet_created",
        f"IP subnet {subnet.cidr} created on {router.name}",
        resource_type="subnet", resource_id=subnet.id,
    )
    await db.commit()
    await db.refresh(subnet)
    logger.info("Created subnet %s (id=%s) on router %s", subnet.cidr, subnet.id, router.id)

    generated = 0
    if settings.AUTO_GENERATE_ON_CREATE if auto_generate is None else auto_generate:
        try:
            check_generation_policy(network)
        except SubnetTooLarge as e:
            logger.info("Skipping automatic IP generation for %s: %s", subnet.cidr, e.message)
        else:
            result = await generate_addresses(db, subnet)
            generated = result.count
            await db.refresh(subnet)
    return subnet, generated


async def update_subnet(db: AsyncSession, subnet_id: int, data: dict) -> Subnet:
    for key in ("allocation_mode", "status"):
        if key in data and data[key] is None:
            raise ValidationFailed(f"{key} cannot be null", {"field": key})
    subnet = await get_subnet(db, subnet_id)

    if data.get("router_id") is not None and data["router_id"] != subnet.router_id:
        await _require_router(db, data["router_id"])
        subnet.router_id = data["router_id"]

    network = ipaddress.IPv4Network(subnet.cidr)
    new_cidr = data.get("cidr")
    if new_cidr:
        candidate = require_valid_cidr(
            new_cidr, min_prefix=settings.SUBNET_MIN_PREFIX, max_prefix=settings.SUBNET_MAX_PREFIX
        )
        if str(candidate) != subnet.cidr:
            count = (await db.execute(
                select(func.count(IPAddress.id)).where(IPAddress.subnet_id == subnet_id)
            )).scalar() or 0
            if count:
                raise HasDependents(
                    "Cannot change the network of a subnet that already has generated addresses",
                    {"addresses": count},
                )
            await _check_overlaps(db, candidate, exclude_id=subnet_id)
            network = candidate
            subnet.cidr = str(network)
            subnet.network_int, subnet.broadcast_int = network_bounds(network)
            subnet.prefix_length = network.prefixlen
            if "gateway" not in data or not data.get("gateway"):
                subnet.gateway = _check_gateway(None, network)

    if data.get("gateway"):
        subnet.gateway = _check_gateway(data["gateway"], network)

    for key in ("name", "vlan_id", "dns_primary", "dns_secondary", "description", "allocation_mode", "status"):
        if key in data:
            setattr(subnet, key, data[key])

    events.record(
        db, "info", "subnets", "subnet_updated",
        f"IP subnet {subnet.cidr} updated",
        resource_type="subnet", resource_id=subnet.id,
    )
    await db.commit()
    await db.refresh(subnet)
    return subnet


async def delete_subnet(db: AsyncSession, subnet_id: int) -> None:
    subnet = await get_subnet(db, subnet_id)
    assigned = (await db.execute(
        select(func.count(IPAddress.id)).where(
            IPAddress.subnet_id == subnet_id, IPAddress.status == AddressStatus.ASSIGNED
        )
    )).scalar() or 0
    if assigned:
        raise HasDependents("Cannot delete subnet with assigned IP addresses", {"assigned": assigned})

    cidr = subnet.cidr
    await db.execute(delete(IPAddress).where(IPAddress.subnet_id == subnet_id))
    await db.execute(delete(Subnet).where(Subnet.id == subnet_id))
    events.record(
        db, "info", "subnets", "subnet_deleted",
        f"IP subnet {cidr} deleted",
        resource_type="subnet", resource_id=subnet_id,
    )
    await db.commit()
    logger.info("Deleted subnet %s (id=%s)", cidr, subnet_id)
