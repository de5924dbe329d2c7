"""ORM Models for the Estima local store — SQLAlchemy 2.0"""
import uuid
from datetime import datetime, date
from typing import Optional
from sqlalchemy import String, Text, Float, Date, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from estima.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── STORE METADATA ────────────────────────────────────────────────────────────
class StoreMeta(Base):
    __tablename__ = "store_meta"
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


# ── REFERENCE DATA ────────────────────────────────────────────────────────────
class CategoryRecord(Base):
    __tablename__ = "categories"
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(100))


class MaterialRecord(Base):
    __tablename__ = "materials"
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    # Prices (PHP)
    price_low: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_typical: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_high: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sources: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    last_updated: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)


# ── USER DATA ─────────────────────────────────────────────────────────────────
class ProjectRecord(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # [{id, material: {...full snapshot...}, quantity}] in camelCase JSON
    line_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    price_mode: Mapped[str] = mapped_column(String(10), nullable=False, default="typical")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
