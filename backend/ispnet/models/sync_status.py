from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.sql import func
from ispnet.database import Base


class RouterSyncStatus(Base):
    """
    Router-side configuration state for a customer service.

    Written as ``pending`` when a service is provisioned; the configuration
    push itself is performed by an external worker that moves the row to
    in_sync / out_of_sync. Released addresses mark it ``released``.
    """
    __tablename__ = "router_sync_status"

    id = Column(Integer, primary_key=True, index=True)
    router_id = Column(Integer, ForeignKey("network_devices.id"), nullable=False, index=True)
    customer_service_id = Column(Integer, ForeignKey("customer_services.id"), nullable=False, index=True)
    ip_address_id = Column(Integer, ForeignKey("ip_addresses.id", ondelete="SET NULL"), nullable=True)
    sync_status = Column(String(20), default="pending", nullable=False)  # pending, in_sync, out_of_sync, released
    retry_count = Column(Integer, default=0, nullable=False)
    sync_message = Column(Text, nullable=True)
    last_checked = Column(DateTime(timezone=True), server_default=func.now())
    last_synced = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("router_id", "customer_service_id", name="uq_router_sync_router_service"),
    )
