from ispnet.models.network_device import NetworkDevice
from ispnet.models.subnet import Subnet, IPAddress, AddressStatus
from ispnet.models.customer import Customer, ServicePlan, CustomerService, ServiceStatus
from ispnet.models.sync_status import RouterSyncStatus
from ispnet.models.system_event import SystemEvent

__all__ = [
    "NetworkDevice",
    "Subnet", "IPAddress", "AddressStatus",
    "Customer", "ServicePlan", "CustomerService", "ServiceStatus",
    "RouterSyncStatus",
    "SystemEvent",
]
