"""
Overlap Detector
Finds existing subnets whose address range intersects a candidate CIDR.
"""
import ipaddress
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.config import settings
from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import Subnet
from ispnet.services.cidr import network_bounds


@dataclass
class SubnetConflict:
    id: int
    cidr: str
    name: Optional[str]
    router_id: int
    router_name: Optional[str]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cidr": self.cidr,
            "name": self.name,
            "router_id": self.router_id,
            "router_name": self.router_name,
        }


def ranges_overlap(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    """Inclusive integer ranges intersect (containment either way or partial)."""
    return a[0] <= b[1] and a[1] >= b[0]


async def find_overlaps(
    db: AsyncSession,
    network: ipaddress.IPv4Network,
    exclude_subnet_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[SubnetConflict]:
    limit = settings.OVERLAP_RESULT_LIMIT if limit is None else limit
    first, last = network_bounds(network)

    query = (
        select(Subnet.id, Subnet.cidr, Subnet.name, Subnet.router_id, NetworkDevice.name)
        .outerjoin(NetworkDevice, NetworkDevice.id == Subnet.router_id)
        .where(Subnet.network_int <= last, Subnet.broadcast_int >= first)
        .order_by(Subnet.network_int, Subnet.id)
        .limit(limit)
    )
    if exclude_subnet_id is not None:
        query = query.where(Subnet.id != exclude_subnet_id)

    result = await db.execute(query)
    return [
        SubnetConflict(id=row[0], cidr=row[1], name=row[2], router_id=row[3], router_name=row[4])
        for row in result.all()
    ]
