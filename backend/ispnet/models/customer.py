"""
Billing-domain tables.

These are owned by the customer/billing application; only the columns the
provisioning flow reads or writes are mapped here.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ispnet.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    business_name = Column(String(255))
    email = Column(String(255))
    city = Column(String(100))
    status = Column(String(20), default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    services = relationship("CustomerService", back_populates="customer")


class ServicePlan(Base):
    __tablename__ = "service_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), default=0)
    download_speed = Column(Integer)  # Mbps
    upload_speed = Column(Integer)    # Mbps
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ServiceStatus:
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    FAILED = "failed"          # router configuration was rejected

    LIVE = (PENDING, ACTIVE)


class CustomerService(Base):
    __tablename__ = "customer_services"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    service_plan_id = Column(Integer, ForeignKey("service_plans.id"), nullable=True)
    router_id = Column(Integer, ForeignKey("network_devices.id"), nullable=True, index=True)
    ip_address = Column(String(50), nullable=True)  # denormalized copy of the assigned address
    monthly_fee = Column(Numeric(10, 2), default=0)
    status = Column(String(20), default=ServiceStatus.PENDING, nullable=False)
    start_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    customer = relationship("Customer", back_populates="services")
