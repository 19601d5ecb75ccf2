from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.clock import utcnow
from ..core.database import Base


class Machine(Base):
    __tablename__ = "machines"

    id = Column(Integer, primary_key=True, index=True)
    machine_number = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=utcnow)

    documents = relationship("MachineDocument", back_populates="machine", cascade="all, delete-orphan")


class MachineDocument(Base):
    __tablename__ = "machine_documents"

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False)

    document_type = Column(String(32), nullable=False)  # RC_Book, PUC, Fitness, Insurance
    expiry_date = Column(Date, nullable=False, index=True)
    last_renewed_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    machine = relationship("Machine", back_populates="documents")

    __table_args__ = (UniqueConstraint("machine_id", "document_type", name="unique_machine_document"),)
