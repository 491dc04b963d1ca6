"""SQLAlchemy models for incidents, crew assignments, personnel, notes, attachments and equipment."""
from __future__ import annotations

from sqlalchemy import Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Largest signed 64-bit value; drivers overflow above it
MAX_ID = 2**63 - 1


class Base(DeclarativeBase):
    """Base class for all models."""


class User(Base):
    """Personnel record. Referenced by crew assignments, notes and attachments."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, server_default="Firefighter")
    availability_status: Mapped[str] = mapped_column(String(30), nullable=False, server_default="Available")
    station_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Incident(Base):
    """Logged emergency event."""

    __tablename__ = "incidents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_code: Mapped[str | None] = mapped_column(String(20), nullable=True, unique=True)  # INC-2025-00042
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    incident_type: Mapped[str] = mapped_column(String(30), nullable=False)  # fire|ems|rescue|hazmat|public_assist|other
    priority: Mapped[str] = mapped_column(String(10), nullable=False)  # high|medium|low
    status: Mapped[str] = mapped_column(String(10), nullable=False, server_default="active")  # active|pending|closed
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reported_at: Mapped[str] = mapped_column(String(30), nullable=False, index=True)  # ISO format timestamp
    created_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[str] = mapped_column(String(30), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    crew: Mapped[list["IncidentPersonnel"]] = relationship(
        "IncidentPersonnel", back_populates="incident", cascade="all, delete-orphan", passive_deletes=True
    )
    notes: Mapped[list["Note"]] = relationship(
        "Note", back_populates="incident", cascade="all, delete-orphan", passive_deletes=True
    )
    attachments: Mapped[list["Attachment"]] = relationship(
        "Attachment", back_populates="incident", cascade="all, delete-orphan", passive_deletes=True
    )


class IncidentPersonnel(Base):
    """Crew assignment: one user on one incident with a role."""

    __tablename__ = "incident_personnel"
    __table_args__ = (UniqueConstraint("incident_id", "user_id", name="uq_incident_personnel_incident_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    role_on_incident: Mapped[str] = mapped_column(String(50), nullable=False, server_default="Firefighter")
    assigned_at: Mapped[str] = mapped_column(String(30), nullable=False)
    released_at: Mapped[str | None] = mapped_column(String(30), nullable=True)

    incident: Mapped["Incident"] = relationship("Incident", back_populates="crew")
    user: Mapped["User"] = relationship("User")


class Note(Base):
    """Log note on an incident."""

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(String(30), nullable=False)

    incident: Mapped["Incident"] = relationship("Incident", back_populates="notes")


class Attachment(Base):
    """Attachment metadata. The file itself lives outside the database."""

    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name_on_disk: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path_relative: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_at: Mapped[str] = mapped_column(String(30), nullable=False)

    incident: Mapped["Incident"] = relationship("Incident", back_populates="attachments")


class Equipment(Base):
    """Apparatus and gear tracked per station."""

    __tablename__ = "equipment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    equipment_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="Available")  # Available|In_Use|Maintenance
    station_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
