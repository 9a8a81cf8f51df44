from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from datetime import datetime
import ipaddress


def _check_ip(v: Optional[str]) -> Optional[str]:
    if v is not None and v != "":
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError(f"Invalid IP address: {v}")
    return v


class SubnetCreate(BaseModel):
    router_id: int
    cidr: str
    name: Optional[str] = None
    gateway: Optional[str] = None
    vlan_id: Optional[int] = Field(None, ge=1, le=4094)
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    description: Optional[str] = None
    allocation_mode: Literal["dynamic", "static"] = "dynamic"
    status: Literal["active", "inactive"] = "active"

    @field_validator("gateway", "dns_primary", "dns_secondary")
    @classmethod
    def validate_ips(cls, v: Optional[str]) -> Optional[str]:
        return _check_ip(v)


class SubnetUpdate(BaseModel):
    router_id: Optional[int] = None
    cidr: Optional[str] = None
    name: Optional[str] = None
    gateway: Optional[str] = None
    vlan_id: Optional[int] = Field(None, ge=1, le=4094)
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    description: Optional[str] = None
    allocation_mode: Optional[Literal["dynamic", "static"]] = None
    status: Optional[Literal["active", "inactive"]] = None

    @field_validator("gateway", "dns_primary", "dns_secondary")
    @classmethod
    def validate_ips(cls, v: Optional[str]) -> Optional[str]:
        return _check_ip(v)


class SubnetResponse(BaseModel):
    id: int
    name: Optional[str] = None
    cidr: str
    prefix_length: int
    router_id: int
    router_name: Optional[str] = None
    gateway: Optional[str] = None
    vlan_id: Optional[int] = None
    dns_primary: Optional[str] = None
    dns_secondary: Optional[str] = None
    description: Optional[str] = None
    allocation_mode: str
    status: str
    total_ips: int = 0
    used_ips: int = 0
    reserved_ips: int = 0
    available_ips: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubnetCreateResponse(SubnetResponse):
    generated_ips: int = 0


class CIDRRequest(BaseModel):
    cidr: str


class OverlapCheckRequest(BaseModel):
    cidr: str
    exclude_id: Optional[int] = Field(None, alias="excludeId")

    model_config = {"populate_by_name": True}


class SubnetConflictResponse(BaseModel):
    id: int
    cidr: str
    name: Optional[str] = None
    router_id: int
    router_name: Optional[str] = None


class OverlapCheckResponse(BaseModel):
    overlaps: bool
    subnets: List[SubnetConflictResponse] = []
    message: Optional[str] = None


class GenerateResponse(BaseModel):
    message: str
    count: int
    expected: int
    subnet: str
    resumed: bool = False
