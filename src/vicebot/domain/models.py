"""Incident persistence models."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, JSON
from sqlalchemy.sql import func

from vicebot.infra.database import Base


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    folio = Column(String(20), nullable=False, unique=True, index=True)
    status = Column(String(20), default="open")
    descripcion = Column(Text, nullable=True)
    descripcion_original = Column(Text, nullable=True)
    interpretacion = Column(Text, nullable=True)
    lugar = Column(String(200), nullable=False)
    building = Column(String(100), nullable=True)
    floor = Column(String(20), nullable=True)
    room = Column(String(20), nullable=True)
    area_destino = Column(String(10), nullable=False, index=True)
    areas = Column(JSON, default=list)
    details = Column(JSON, default=list)
    notes = Column(JSON, default=list)
    origin_conversation_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class IncidentEvent(Base):
    __tablename__ = "incident_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    incident_id = Column(String(36), ForeignKey("incidents.id"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # created, attachments_added, dispatched, dispatch_failed
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime, default=func.now())


class IncidentAttachment(Base):
    __tablename__ = "incident_attachments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    incident_id = Column(String(36), ForeignKey("incidents.id"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    mimetype = Column(String(100), nullable=False)
    path = Column(String(500), nullable=False)
    size = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())


class FolioSequence(Base):
    __tablename__ = "folio_sequences"

    prefix = Column(String(10), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
