from pydantic import BaseModel, model_validator
from typing import Optional, Literal, List
from datetime import datetime, date
from decimal import Decimal

from ispnet.schemas.ip_address import IPAddressResponse


class ProvisionRequest(BaseModel):
    customer_id: int
    service_plan_id: int
    router_id: int
    allocation_mode: Literal["dynamic", "static"] = "dynamic"
    ip_address: Optional[str] = None

    @model_validator(mode="after")
    def static_needs_address(self):
        if self.allocation_mode == "static" and not self.ip_address:
            raise ValueError("ip_address is required for static allocation")
        return self


class ServiceResponse(BaseModel):
    id: int
    customer_id: int
    service_plan_id: Optional[int] = None
    service_plan_name: Optional[str] = None
    router_id: Optional[int] = None
    router_name: Optional[str] = None
    ip_address: Optional[str] = None
    monthly_fee: Optional[Decimal] = None
    status: str
    start_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SuspendRequest(BaseModel):
    release_ip: bool = False
    reason: Optional[str] = None


class TerminateRequest(BaseModel):
    release_ip: bool = True
    reason: Optional[str] = None


class LifecycleResponse(BaseModel):
    service: ServiceResponse
    released: Optional[IPAddressResponse] = None


class CustomerReleaseResponse(BaseModel):
    customer_id: int
    released: List[IPAddressResponse]
    message: str


class SyncResultRequest(BaseModel):
    success: bool
    message: Optional[str] = None


class RouterSyncResponse(BaseModel):
    router_id: int
    customer_service_id: int
    ip_address_id: Optional[int] = None
    sync_status: str
    retry_count: int = 0
    sync_message: Optional[str] = None
    last_checked: Optional[datetime] = None
    last_synced: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SyncResultResponse(BaseModel):
    service: ServiceResponse
    sync: RouterSyncResponse
