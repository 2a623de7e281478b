"""
SQLAlchemy models for the roster import system.

This module defines the target schema (stores, contacts, store schedules)
using SQLAlchemy ORM, matching the schema defined in Alembic migrations.
"""

from sqlalchemy import (
    JSON, Boolean, Column, Integer, String, Text, Numeric, Date, Time, TIMESTAMP,
    ForeignKey, CheckConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class Store(Base):
    """A store location, keyed by its store number."""

    __tablename__ = 'stores'
    __table_args__ = (
        CheckConstraint('store_number > 0', name='stores_store_number_positive'),
        Index('idx_stores_city', 'city'),
        {'comment': 'Store roster; store_number is the natural key'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    store_number = Column(
        Integer,
        nullable=False,
        unique=True,
        comment='Business store number (natural key)'
    )
    name = Column(
        String(255),
        nullable=True,
        comment='Store display name'
    )
    address = Column(Text, nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(64), nullable=True)
    zip_code = Column(
        String(20),
        nullable=True,
        comment='Postal code'
    )
    phone = Column(String(50), nullable=True)
    is_active = Column(
        Boolean,
        server_default=text('true'),
        nullable=False
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Refreshed on every upsert'
    )

    schedules = relationship('ScheduleEntry', back_populates='store')

    def __repr__(self):
        return f"<Store(store_number={self.store_number}, name='{self.name}')>"


class Contact(Base):
    """A person (employee) reachable by phone."""

    __tablename__ = 'contacts'
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name='contacts_status_check'
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name='contacts_priority_check'
        ),
        Index('idx_contacts_name', 'name'),
        {'comment': 'Employees and other contacts; phone is the natural key'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(Text, nullable=False)
    phone = Column(
        String(64),
        nullable=False,
        unique=True,
        comment='Normalized phone number or deterministic placeholder'
    )
    email = Column(String(255), nullable=True)
    status = Column(
        String(20),
        server_default='active',
        nullable=False
    )
    priority = Column(
        String(20),
        server_default='medium',
        nullable=False
    )
    notes = Column(
        Text,
        nullable=True,
        comment='Free text; may embed "Employee ID: <n>" and "Role: <label>"'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<Contact(name='{self.name}', phone='{self.phone}')>"


class ScheduleEntry(Base):
    """A single scheduled shift. Append-only, no natural key."""

    __tablename__ = 'store_schedules'
    __table_args__ = (
        CheckConstraint('scheduled_hours >= 0', name='store_schedules_hours_check'),
        Index('idx_store_schedules_store_date', 'store_number', 'date'),
        Index('idx_store_schedules_employee', 'employee_name'),
        {'comment': 'Shift schedule facts, fully replaced on each import'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    store_number = Column(
        Integer,
        ForeignKey('stores.store_number'),
        nullable=False
    )
    date = Column(Date, nullable=False)
    employee_name = Column(Text, nullable=False)
    employee_id = Column(
        String(64),
        server_default='',
        nullable=False
    )
    role = Column(String(255), nullable=True)
    employee_type = Column(String(255), nullable=True)
    shift_time = Column(
        String(100),
        server_default='',
        nullable=False,
        comment='Raw shift text, e.g. "9:00am - 5:00pm"'
    )
    start_time = Column(
        Time,
        nullable=True,
        comment='Derived from shift_time (NULL if unparsable)'
    )
    end_time = Column(
        Time,
        nullable=True,
        comment='Derived from shift_time (NULL if unparsable)'
    )
    scheduled_hours = Column(
        Numeric(precision=6, scale=2),
        server_default='0',
        nullable=False
    )
    notes = Column(Text, nullable=True)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    store = relationship('Store', back_populates='schedules')

    def __repr__(self):
        return (f"<ScheduleEntry(store_number={self.store_number}, date={self.date}, "
                f"employee='{self.employee_name}')>")
