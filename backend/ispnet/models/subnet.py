from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, ForeignKey, Text, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ispnet.database import Base


class AddressStatus:
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    RESERVED = "reserved"

    ALL = (AVAILABLE, ASSIGNED, RESERVED)


class Subnet(Base):
    __tablename__ = "subnets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=True)
    cidr = Column(String(50), nullable=False, unique=True)   # canonical, e.g. "192.168.1.0/24"
    network_int = Column(BigInteger, nullable=False)
    broadcast_int = Column(BigInteger, nullable=False)
    prefix_length = Column(Integer, nullable=False)
    router_id = Column(Integer, ForeignKey("network_devices.id"), nullable=False, index=True)
    gateway = Column(String(50), nullable=True)
    vlan_id = Column(Integer, nullable=True)
    dns_primary = Column(String(50), nullable=True)
    dns_secondary = Column(String(50), nullable=True)
    description = Column(Text)
    allocation_mode = Column(String(20), default="dynamic", nullable=False)  # dynamic, static
    status = Column(String(20), default="active", nullable=False)            # active, inactive

    # Cached utilization, always recomputed from ip_addresses
    total_ips = Column(Integer, default=0, nullable=False)
    used_ips = Column(Integer, default=0, nullable=False)
    reserved_ips = Column(Integer, default=0, nullable=False)
    available_ips = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    router = relationship("NetworkDevice", back_populates="subnets")
    addresses = relationship("IPAddress", back_populates="subnet", passive_deletes=True)

    __table_args__ = (
        Index("ix_subnets_range", "network_int", "broadcast_int"),
    )


class IPAddress(Base):
    __tablename__ = "ip_addresses"

    id = Column(Integer, primary_key=True, index=True)
    subnet_id = Column(Integer, ForeignKey("subnets.id", ondelete="CASCADE"), nullable=False, index=True)
    address = Column(String(50), nullable=False, unique=True, index=True)
    ip_int = Column(BigInteger, nullable=False)
    status = Column(String(20), default=AddressStatus.AVAILABLE, nullable=False)
    customer_service_id = Column(Integer, ForeignKey("customer_services.id"), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    last_synced = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subnet = relationship("Subnet", back_populates="addresses")

    __table_args__ = (
        UniqueConstraint("subnet_id", "ip_int", name="uq_ip_addresses_subnet_ip"),
        Index("ix_ip_addresses_pick", "subnet_id", "status", "ip_int"),
        CheckConstraint(
            "(status = 'assigned') = (customer_service_id IS NOT NULL)",
            name="ck_ip_addresses_owner_iff_assigned",
        ),
        CheckConstraint(
            "status IN ('available', 'assigned', 'reserved')",
            name="ck_ip_addresses_status",
        ),
    )
