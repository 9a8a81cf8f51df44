import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List, Optional

from ispnet.crypto import reseal_secret, seal_secret
from ispnet.database import get_db
from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import Subnet
from ispnet.schemas.ip_address import IPAddressListItem
from ispnet.schemas.network_device import NetworkDeviceCreate, NetworkDeviceUpdate, NetworkDeviceResponse
from ispnet.schemas.subnet import SubnetResponse
from ispnet.services import ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/network-devices", tags=["Network Devices"])


async def _get_device_or_404(device_id: int, db: AsyncSession) -> NetworkDevice:
    result = await db.execute(select(NetworkDevice).where(NetworkDevice.id == device_id))
    device = result.scalar_one_or_none()
    if not device:
        raise HTTPException(status_code=404, detail="Router not found")
    return device


async def _with_subnet_count(device: NetworkDevice, db: AsyncSession) -> NetworkDeviceResponse:
    count_result = await db.execute(select(func.count(Subnet.id)).where(Subnet.router_id == device.id))
    d = NetworkDeviceResponse.model_validate(device)
    d.subnet_count = count_result.scalar() or 0
    d.has_api_password = bool(device.api_password)
    return d


@router.get("/", response_model=List[NetworkDeviceResponse])
async def list_devices(
    status: Optional[str] = None,
    location: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    query = select(NetworkDevice).order_by(NetworkDevice.id)
    if status:
        query = query.where(NetworkDevice.status == status)
    if location:
        query = query.where(NetworkDevice.location.ilike(f"%{location}%"))
    result = await db.execute(query)
    return [await _with_subnet_count(d, db) for d in result.scalars().all()]


@router.post("/", response_model=NetworkDeviceResponse, status_code=201)
async def create_device(payload: NetworkDeviceCreate, db: AsyncSession = Depends(get_db)):
    existing = await db.execute(select(NetworkDevice).where(NetworkDevice.ip_address == payload.ip_address))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Router with this IP already exists")

    data = payload.model_dump()
    data["api_password"] = seal_secret(data.get("api_password"))
    device = NetworkDevice(**data)
    db.add(device)
    await db.commit()
    await db.refresh(device)
    return await _with_subnet_count(device, db)


@router.get("/{device_id}", response_model=NetworkDeviceResponse)
async def get_device(device_id: int, db: AsyncSession = Depends(get_db)):
    device = await _get_device_or_404(device_id, db)
    return await _with_subnet_count(device, db)


@router.patch("/{device_id}", response_model=NetworkDeviceResponse)
async def update_device(device_id: int, payload: NetworkDeviceUpdate, db: AsyncSession = Depends(get_db)):
    device = await _get_device_or_404(device_id, db)
    update_data = payload.model_dump(exclude_unset=True)
    if "api_password" in update_data:
        update_data["api_password"] = seal_secret(update_data["api_password"])
    for key, value in update_data.items():
        setattr(device, key, value)
    await db.commit()
    await db.refresh(device)
    return await _with_subnet_count(device, db)


@router.get("/{device_id}/subnets", response_model=List[SubnetResponse])
async def list_device_subnets(device_id: int, db: AsyncSession = Depends(get_db)):
    device = await _get_device_or_404(device_id, db)
    result = await db.execute(select(Subnet).where(Subnet.router_id == device_id).order_by(Subnet.network_int))
    subnets = []
    for subnet in result.scalars().all():
        s = SubnetResponse.model_validate(subnet)
        s.router_name = device.name
        subnets.append(s)
    return subnets


@router.get("/{device_id}/available-ips", response_model=List[IPAddressListItem])
async def list_available_ips(
    device_id: int,
    limit: int = Query(100, le=1000),
    db: AsyncSession = Depends(get_db),
):
    await _get_device_or_404(device_id, db)
    return await ledger.available_addresses_for_router(db, device_id, limit=limit)


@router.post("/reseal-credentials")
async def reseal_credentials(db: AsyncSession = Depends(get_db)):
    """Re-encrypt stored router passwords under the current SECRET_KEY after a key rotation."""
    result = await db.execute(select(NetworkDevice).where(NetworkDevice.api_password.isnot(None)))
    devices = result.scalars().all()
    for device in devices:
        device.api_password = reseal_secret(device.api_password)
    await db.commit()
    logger.info("Resealed API credentials for %d routers", len(devices))
    return {"resealed": len(devices)}
