"""
Tenant and collaborator models

Garages own every other row. Clients and vehicles are kept minimal here: the
service order flow only needs to check that a vehicle exists for the garage and
reach its client.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from garage_backend.core.database import Base
from garage_backend.core.utils import utcnow


class Garage(Base):
    __tablename__ = "garages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    document = Column(String(20), nullable=True)  # CNPJ/CPF
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    def __repr__(self):
        return f"<Garage {self.id}: {self.name}>"


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    document = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    vehicles = relationship("Vehicle", back_populates="client")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    plate = Column(String(10), nullable=False)
    brand = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    color = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    client = relationship("Client", back_populates="vehicles")

    __table_args__ = (
        Index("ix_vehicles_garage_plate", garage_id, plate),
    )

    def __repr__(self):
        return f"<Vehicle {self.id}: {self.plate}>"
