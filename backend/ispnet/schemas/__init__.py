from ispnet.schemas.subnet import (
    SubnetCreate, SubnetUpdate, SubnetResponse, SubnetCreateResponse,
    CIDRRequest, OverlapCheckRequest, OverlapCheckResponse, GenerateResponse,
)
from ispnet.schemas.ip_address import (
    IPAddressResponse, IPAddressListItem, AssignRequest, ReleaseRequest, ReleaseResponse,
    ReserveRequest, MarkSyncedRequest,
)
from ispnet.schemas.provisioning import (
    ProvisionRequest, ServiceResponse, SuspendRequest, TerminateRequest, LifecycleResponse,
    CustomerReleaseResponse,
)
from ispnet.schemas.network_device import NetworkDeviceCreate, NetworkDeviceUpdate, NetworkDeviceResponse

__all__ = [
    "SubnetCreate", "SubnetUpdate", "SubnetResponse", "SubnetCreateResponse",
    "CIDRRequest", "OverlapCheckRequest", "OverlapCheckResponse", "GenerateResponse",
    "IPAddressResponse", "IPAddressListItem", "AssignRequest", "ReleaseRequest", "ReleaseResponse",
    "ReserveRequest", "MarkSyncedRequest",
    "ProvisionRequest", "ServiceResponse", "SuspendRequest", "TerminateRequest", "LifecycleResponse",
    "CustomerReleaseResponse",
    "NetworkDeviceCreate", "NetworkDeviceUpdate", "NetworkDeviceResponse",
]
