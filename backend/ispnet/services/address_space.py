"""
Address Space Generator
Enumerates the usable hosts of a subnet and bulk-inserts them into the
allocation ledger in fixed-size batches.
"""
import ipaddress
import logging
from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.config import settings
from ispnet.errors import AlreadyGenerated, GenerationIncomplete, SubnetTooLarge
from ispnet.models.subnet import AddressStatus, IPAddress, Subnet
from ispnet.services import events
from ispnet.services.cidr import int_to_ip, network_bounds, parse_network

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    subnet_id: int
    cidr: str
    count: int        # rows inserted by this call
    expected: int     # usable hosts in the subnet
    resumed: bool = False


def usable_host_count(prefix: int) -> int:
    if prefix >= 31:
        return 0
    return 2 ** (32 - prefix) - 2


def iter_host_addresses(network: ipaddress.IPv4Network) -> Iterator[int]:
    """Yield network+1 .. broadcast-1 as integers, ascending."""
    first, last = network_bounds(network)
    return iter(range(first + 1, last))


def batched(iterable: Iterable, size: int) -> Iterator[List]:
    it = iter(iterable)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


def check_generation_policy(
    network: ipaddress.IPv4Network,
    min_prefix: Optional[int] = None,
    max_prefix: Optional[int] = None,
    max_hosts: Optional[int] = None,
) -> int:
    """Raise SubnetTooLarge unless the pool may be generated; returns usable count."""
    min_prefix = settings.IP_GENERATION_MIN_PREFIX if min_prefix is None else min_prefix
    max_prefix = settings.IP_GENERATION_MAX_PREFIX if max_prefix is None else max_prefix
    max_hosts = settings.IP_GENERATION_MAX_HOSTS if max_hosts is None else max_hosts

    prefix = network.prefixlen
    if prefix < min_prefix or prefix > max_prefix:
        raise SubnetTooLarge(
            f"Subnet prefix must be between /{min_prefix} and /{max_prefix} for IP generation",
            {"prefix": prefix},
        )
    usable = usable_host_count(prefix)
    if usable > max_hosts:
        raise SubnetTooLarge(
            f"Subnet too large. Maximum {max_hosts:,} usable addresses allowed for automatic generation.",
            {"usable_hosts": usable},
        )
    return usable


async def count_addresses(db: AsyncSession, subnet_id: int) -> int:
    result = await db.execute(select(func.count(IPAddress.id)).where(IPAddress.subnet_id == subnet_id))
    return result.scalar() or 0


async def generate_addresses(
    db: AsyncSession,
    subnet: Subnet,
    resume: bool = False,
    batch_size: Optional[int] = None,
) -> GenerationResult:
    """
    Populate the ledger with every usable host of ``subnet`` as ``available``.

    Each batch is committed on its own. If a batch fails, the remaining
    batches are skipped and GenerationIncomplete reports how many rows are in
    place; calling again with resume=True inserts only the missing hosts.
    """
    from ispnet.services.ledger import recompute_utilization

    batch_size = batch_size or settings.IP_GENERATION_BATCH_SIZE
    network = parse_network(subnet.cidr)
    expected = check_generation_policy(network)

    # Plain values up front; the ORM instance expires on rollback.
    subnet_id, cidr = subnet.id, subnet.cidr

    existing = await count_addresses(db, subnet_id)
    if existing and not resume:
        raise AlreadyGenerated(
            "IP addresses already generated for this subnet",
            {"existing": existing, "expected": expected},
        )
    if resume and existing >= expected:
        raise AlreadyGenerated(
            "IP address pool for this subnet is already complete",
            {"existing": existing, "expected": expected},
        )

    hosts: Iterable[int] = iter_host_addresses(network)
    if existing:
        present = set(
            (await db.execute(select(IPAddress.ip_int).where(IPAddress.subnet_id == subnet_id))).scalars().all()
        )
        hosts = (h for h in hosts if h not in present)
        logger.info("Resuming generation for %s: %d of %d present", cidr, existing, expected)

    inserted = 0
    for number, batch in enumerate(batched(hosts, batch_size), start=1):
        rows = [
            {"subnet_id": subnet_id, "address": int_to_ip(h), "ip_int": h, "status": AddressStatus.AVAILABLE}
            for h in batch
        ]
        try:
            await db.execute(insert(IPAddress), rows)
            await db.commit()
        except Exception as e:
            await db.rollback()
            committed = existing + inserted
            logger.error("Batch %d for subnet %s failed after %d rows: %s", number, cidr, committed, e)
            events.record(
                db, "error", "ip_management", "ip_generation_incomplete",
                f"IP generation for {cidr} stopped at {committed}/{expected}",
                resource_type="subnet", resource_id=subnet_id,
                details={"error": str(e), "committed": committed, "expected": expected},
            )
            await db.commit()
            raise GenerationIncomplete(
                f"IP generation stopped after {committed} of {expected} addresses; retry with resume",
                {"committed": committed, "expected": expected},
            ) from e
        inserted += len(rows)
        logger.debug("Inserted batch %d for %s: %d/%d", number, cidr, existing + inserted, expected)

    await recompute_utilization(db, subnet_id)
    events.record(
        db, "info", "ip_management", "ip_pool_generated",
        f"Generated {inserted} addresses for {cidr}",
        resource_type="subnet", resource_id=subnet_id,
        details={"count": inserted, "expected": expected, "resumed": bool(existing)},
    )
    await db.commit()
    logger.info("IP generation for %s complete: %d inserted", cidr, inserted)

    return GenerationResult(subnet_id=subnet_id, cidr=cidr, count=inserted, expected=expected, resumed=bool(existing))
