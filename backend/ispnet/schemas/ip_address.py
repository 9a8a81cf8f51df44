from pydantic import BaseModel, model_validator
from typing import Optional, List
from datetime import datetime


class IPAddressResponse(BaseModel):
    id: int
    address: str
    subnet_id: int
    status: str
    customer_service_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    last_synced: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class IPAddressListItem(IPAddressResponse):
    subnet_cidr: Optional[str] = None
    router_id: Optional[int] = None
    customer_id: Optional[int] = None


class AssignRequest(BaseModel):
    service_id: int
    subnet_id: Optional[int] = None
    ip_address: Optional[str] = None


class ReleaseRequest(BaseModel):
    service_id: Optional[int] = None
    ip_address: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def one_target(self):
        if self.service_id is None and not self.ip_address:
            raise ValueError("Must supply either service_id or ip_address")
        return self


class ReleaseResponse(BaseModel):
    message: str
    address: Optional[IPAddressResponse] = None


class ReserveRequest(BaseModel):
    ip_address: str
    notes: Optional[str] = None


class MarkSyncedRequest(BaseModel):
    address_ids: List[int]
