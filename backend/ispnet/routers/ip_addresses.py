from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import timedelta
from typing import List, Literal, Optional

from ispnet.config import settings
from ispnet.database import get_db
from ispnet.schemas.ip_address import (
    IPAddressResponse, IPAddressListItem, AssignRequest, ReleaseRequest, ReleaseResponse,
    ReserveRequest, MarkSyncedRequest,
)
from ispnet.services import ledger

router = APIRouter(prefix="/api/ip-addresses", tags=["IP Addresses"])


@router.get("/", response_model=List[IPAddressListItem])
async def list_ip_addresses(
    status: Optional[Literal["available", "assigned", "reserved"]] = None,
    subnet_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    router_id: Optional[int] = None,
    limit: int = Query(500, le=5000),
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    return await ledger.list_addresses(
        db, status=status, subnet_id=subnet_id, customer_id=customer_id,
        router_id=router_id, limit=limit, offset=offset,
    )


@router.get("/stale-sync", response_model=List[IPAddressResponse])
async def list_stale_sync(
    max_age_minutes: int = Query(None, ge=1),
    limit: int = Query(100, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Assigned addresses whose router-side state has not been confirmed recently."""
    age = timedelta(minutes=max_age_minutes or settings.SYNC_STALE_MINUTES)
    return await ledger.stale_assignments(db, age, limit=limit)


@router.post("/mark-synced")
async def mark_synced(payload: MarkSyncedRequest, db: AsyncSession = Depends(get_db)):
    updated = await ledger.mark_synced(db, payload.address_ids)
    await db.commit()
    return {"updated": updated}


@router.post("/assign", response_model=IPAddressResponse)
async def assign_ip_address(payload: AssignRequest, db: AsyncSession = Depends(get_db)):
    address = await ledger.assign_address(
        db, payload.service_id, subnet_id=payload.subnet_id, address=payload.ip_address,
    )
    await db.commit()
    return address


@router.post("/release", response_model=ReleaseResponse)
async def release_ip_address(payload: ReleaseRequest, db: AsyncSession = Depends(get_db)):
    address = await ledger.release_address(
        db, service_id=payload.service_id, address=payload.ip_address, reason=payload.reason,
    )
    await db.commit()
    if address is None:
        return ReleaseResponse(message="No IP address assigned to this service")
    return ReleaseResponse(
        message=f"IP address {address.address} released successfully",
        address=IPAddressResponse.model_validate(address),
    )


@router.post("/reserve", response_model=IPAddressResponse)
async def reserve_ip_address(payload: ReserveRequest, db: AsyncSession = Depends(get_db)):
    address = await ledger.reserve_address(db, payload.ip_address, notes=payload.notes)
    await db.commit()
    return address


@router.get("/{address_id}", response_model=IPAddressResponse)
async def get_ip_address(address_id: int, db: AsyncSession = Depends(get_db)):
    return await ledger.get_address(db, address_id)
