from pydantic import BaseModel, field_validator
from typing import Optional, Literal
from datetime import datetime
import ipaddress


class NetworkDeviceCreate(BaseModel):
    name: str
    ip_address: str
    hostname: Optional[str] = None
    device_type: str = "router"
    location: Optional[str] = None
    status: Literal["online", "offline", "maintenance"] = "offline"
    api_username: Optional[str] = None
    api_password: Optional[str] = None
    api_port: int = 8728
    description: Optional[str] = None

    @field_validator("ip_address")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        try:
            ipaddress.ip_address(v)
        except ValueError:
            raise ValueError(f"Invalid IP address: {v}")
        return v


class NetworkDeviceUpdate(BaseModel):
    name: Optional[str] = None
    hostname: Optional[str] = None
    location: Optional[str] = None
    status: Optional[Literal["online", "offline", "maintenance"]] = None
    api_username: Optional[str] = None
    api_password: Optional[str] = None
    api_port: Optional[int] = None
    description: Optional[str] = None


class NetworkDeviceResponse(BaseModel):
    id: int
    name: str
    hostname: Optional[str] = None
    ip_address: str
    device_type: Optional[str] = None
    location: Optional[str] = None
    status: str
    api_username: Optional[str] = None
    api_port: Optional[int] = None
    description: Optional[str] = None
    subnet_count: Optional[int] = 0
    has_api_password: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
