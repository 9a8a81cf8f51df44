from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ispnet.database import Base


class NetworkDevice(Base):
    __tablename__ = "network_devices"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    hostname = Column(String(255))
    ip_address = Column(String(50), nullable=False, unique=True, index=True)
    device_type = Column(String(50), default="router")  # router, mikrotik, ubiquiti, juniper, other
    location = Column(String(255))
    status = Column(String(20), default="offline", nullable=False)  # online, offline, maintenance
    api_username = Column(String(100), nullable=True)
    api_password = Column(String(255), nullable=True)  # Fernet ciphertext
    api_port = Column(Integer, default=8728)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subnets = relationship("Subnet", back_populates="router")
