from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from ispnet.config import settings
from ispnet.database import get_db
from ispnet.extensions import limiter
from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import Subnet
from ispnet.schemas.subnet import (
    SubnetCreate, SubnetUpdate, SubnetResponse, SubnetCreateResponse,
    CIDRRequest, OverlapCheckRequest, OverlapCheckResponse, GenerateResponse,
)
from ispnet.services import subnets as subnet_service
from ispnet.services.address_space import generate_addresses
from ispnet.services.cidr import require_valid_cidr, validate_cidr
from ispnet.services.ledger import recompute_utilization
from ispnet.services.overlap import find_overlaps

router = APIRouter(prefix="/api/subnets", tags=["Subnets"])


def _to_response(subnet: Subnet, router_name: Optional[str] = None) -> SubnetResponse:
    s = SubnetResponse.model_validate(subnet)
    s.router_name = router_name
    return s


async def _router_name(db: AsyncSession, router_id: int) -> Optional[str]:
    result = await db.execute(select(NetworkDevice.name).where(NetworkDevice.id == router_id))
    return result.scalar_one_or_none()


@router.get("/", response_model=List[SubnetResponse])
async def list_subnets(
    router_id: Optional[int] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Subnet, NetworkDevice.name)
        .outerjoin(NetworkDevice, NetworkDevice.id == Subnet.router_id)
        .order_by(Subnet.network_int)
    )
    if router_id is not None:
        query = query.where(Subnet.router_id == router_id)
    if status:
        query = query.where(Subnet.status == status)
    result = await db.execute(query)
    return [_to_response(subnet, name) for subnet, name in result.all()]


@router.post("/", response_model=SubnetCreateResponse, status_code=201)
async def create_subnet(payload: SubnetCreate, db: AsyncSession = Depends(get_db)):
    subnet, generated = await subnet_service.create_subnet(db, payload.model_dump())
    s = SubnetCreateResponse.model_validate(subnet)
    s.router_name = await _router_name(db, subnet.router_id)
    s.generated_ips = generated
    return s


@router.post("/validate")
async def validate(payload: CIDRRequest):
    """Validate and normalise a CIDR without touching the database."""
    result = validate_cidr(
        payload.cidr,
        min_prefix=settings.SUBNET_MIN_PREFIX,
        max_prefix=settings.SUBNET_MAX_PREFIX,
        allow_ipv6=True,
    )
    return result.to_dict()


@router.post("/check-overlap", response_model=OverlapCheckResponse)
async def check_overlap(payload: OverlapCheckRequest, db: AsyncSession = Depends(get_db)):
    network = require_valid_cidr(
        payload.cidr, min_prefix=settings.SUBNET_MIN_PREFIX, max_prefix=settings.SUBNET_MAX_PREFIX
    )
    conflicts = await find_overlaps(db, network, exclude_subnet_id=payload.exclude_id)
    if conflicts:
        return OverlapCheckResponse(
            overlaps=True,
            subnets=[c.to_dict() for c in conflicts],
            message=f"This subnet overlaps with {len(conflicts)} existing subnet(s)",
        )
    return OverlapCheckResponse(overlaps=False)


@router.get("/{subnet_id}", response_model=SubnetResponse)
async def get_subnet(subnet_id: int, db: AsyncSession = Depends(get_db)):
    subnet = await subnet_service.get_subnet(db, subnet_id)
    return _to_response(subnet, await _router_name(db, subnet.router_id))


@router.patch("/{subnet_id}", response_model=SubnetResponse)
async def update_subnet(subnet_id: int, payload: SubnetUpdate, db: AsyncSession = Depends(get_db)):
    subnet = await subnet_service.update_subnet(db, subnet_id, payload.model_dump(exclude_unset=True))
    return _to_response(subnet, await _router_name(db, subnet.router_id))


@router.delete("/{subnet_id}")
async def delete_subnet(subnet_id: int, db: AsyncSession = Depends(get_db)):
    await subnet_service.delete_subnet(db, subnet_id)
    return {"message": "Subnet deleted successfully"}


@router.post("/{subnet_id}/generate-ips", response_model=GenerateResponse)
@limiter.limit(settings.RATE_LIMIT_GENERATE)
async def generate_ips(
    request: Request,
    subnet_id: int,
    resume: bool = Query(False, description="Insert only the hosts missing from a partial pool"),
    db: AsyncSession = Depends(get_db),
):
    subnet = await subnet_service.get_subnet(db, subnet_id)
    result = await generate_addresses(db, subnet, resume=resume)
    return GenerateResponse(
        message="IP addresses generated successfully",
        count=result.count,
        expected=result.expected,
        subnet=result.cidr,
        resumed=result.resumed,
    )


@router.post("/{subnet_id}/recompute")
async def recompute(subnet_id: int, db: AsyncSession = Depends(get_db)):
    """Rewrite the cached utilization counters from the ledger."""
    await subnet_service.get_subnet(db, subnet_id)
    counts = await recompute_utilization(db, subnet_id)
    await db.commit()
    return {"subnet_id": subnet_id, **counts}
