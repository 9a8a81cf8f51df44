from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func
from ispnet.database import Base


class SystemEvent(Base):
    """
    Activity history of the allocation service, one row per state change:
    pool generation, address assignment and release, provisioning lifecycle,
    subnet changes and reconcile runs.

    Rows are added in the same transaction as the change they describe, so
    a rolled-back operation leaves no event behind.
    """
    __tablename__ = "system_events"

    id            = Column(Integer, primary_key=True, index=True)
    timestamp     = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    level         = Column(String(20), nullable=False, index=True)    # info / warning / error
    source        = Column(String(50), nullable=False, index=True)    # ip_management, provisioning, subnets, reconcile
    event_type    = Column(String(100), nullable=False, index=True)   # ip_assigned, subnet_created …
    resource_type = Column(String(50), nullable=True)                 # subnet / ip_address / service
    resource_id   = Column(String(64), nullable=True)
    message       = Column(String(500), nullable=False)
    details       = Column(Text, nullable=True)                       # JSON object
    request_id    = Column(String(64), nullable=True, index=True)     # X-Request-ID of the originating call

    __table_args__ = (
        Index("ix_system_events_resource", "resource_type", "resource_id"),
    )
