from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ispnet.database import get_db
from ispnet.schemas.ip_address import IPAddressResponse
from ispnet.schemas.provisioning import (
    ProvisionRequest, ServiceResponse, SuspendRequest, TerminateRequest, LifecycleResponse,
    CustomerReleaseResponse, SyncResultRequest, SyncResultResponse, RouterSyncResponse,
)
from ispnet.services import provisioning

router = APIRouter(prefix="/api/provisioning", tags=["Provisioning"])


def _lifecycle(service, released) -> LifecycleResponse:
    return LifecycleResponse(
        service=ServiceResponse.model_validate(service),
        released=IPAddressResponse.model_validate(released) if released else None,
    )


@router.get("/", response_model=List[ServiceResponse])
async def list_provisioned_services(
    router_id: Optional[int] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    rows = await provisioning.list_services(db, router_id=router_id, status=status)
    services = []
    for service, router_name, plan_name in rows:
        s = ServiceResponse.model_validate(service)
        s.router_name = router_name
        s.service_plan_name = plan_name
        services.append(s)
    return services


@router.post("/", response_model=ServiceResponse, status_code=201)
async def provision(payload: ProvisionRequest, db: AsyncSession = Depends(get_db)):
    service = await provisioning.provision_service(
        db,
        customer_id=payload.customer_id,
        service_plan_id=payload.service_plan_id,
        router_id=payload.router_id,
        allocation_mode=payload.allocation_mode,
        ip_address=payload.ip_address,
    )
    return service


@router.post("/{service_id}/suspend", response_model=LifecycleResponse)
async def suspend(service_id: int, payload: Optional[SuspendRequest] = None, db: AsyncSession = Depends(get_db)):
    payload = payload or SuspendRequest()
    service, released = await provisioning.suspend_service(
        db, service_id, release_ip=payload.release_ip, reason=payload.reason,
    )
    return _lifecycle(service, released)


@router.post("/{service_id}/terminate", response_model=LifecycleResponse)
async def terminate(service_id: int, payload: Optional[TerminateRequest] = None, db: AsyncSession = Depends(get_db)):
    payload = payload or TerminateRequest()
    service, released = await provisioning.terminate_service(
        db, service_id, release_ip=payload.release_ip, reason=payload.reason,
    )
    return _lifecycle(service, released)


@router.post("/{service_id}/reactivate", response_model=ServiceResponse)
async def reactivate(service_id: int, db: AsyncSession = Depends(get_db)):
    return await provisioning.reactivate_service(db, service_id)


@router.post("/{service_id}/sync-result", response_model=SyncResultResponse)
async def sync_result(service_id: int, payload: SyncResultRequest, db: AsyncSession = Depends(get_db)):
    """Outcome of the router configuration push for a provisioned service."""
    service, sync = await provisioning.record_sync_result(
        db, service_id, success=payload.success, message=payload.message,
    )
    return SyncResultResponse(
        service=ServiceResponse.model_validate(service),
        sync=RouterSyncResponse.model_validate(sync),
    )


@router.post("/customers/{customer_id}/release", response_model=CustomerReleaseResponse)
async def release_customer(customer_id: int, db: AsyncSession = Depends(get_db)):
    released = await provisioning.release_customer_addresses(db, customer_id)
    return CustomerReleaseResponse(
        customer_id=customer_id,
        released=[IPAddressResponse.model_validate(a) for a in released],
        message=f"Successfully released {len(released)} IP addresses",
    )
