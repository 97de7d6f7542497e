"""
Relational models for the normalized store.

Each import profile writes to exactly one target table. The ``locations`` table
is the entity directory used for per-row location resolution, ``import_runs``
tracks run lifecycle and ``import_audit_log`` is the append-only audit trail.
"""
from datetime import datetime, timezone
import logging
from typing import Dict, Type

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.engine import Engine

from intake.db.session import Base

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class Location(Base):
    """A site/venue that owns imported records."""
    __tablename__ = "locations"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=_utcnow)


class BorkSalesData(Base):
    """Point-of-sale product sales lines."""
    __tablename__ = "bork_sales_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(String(36), nullable=False, index=True)
    location_id = Column(String(36), index=True)
    created_at = Column(String(40))
    date = Column(Date, nullable=False)
    product_name = Column(String(500), nullable=False)
    category = Column(String(255))
    quantity = Column(Float)
    price = Column(Float)
    revenue = Column(Float, nullable=False)
    raw_data = Column(JSON)


class EitjeLaborHours(Base):
    """Worked hours per employee, day and location."""
    __tablename__ = "eitje_labor_hours"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(String(36), nullable=False, index=True)
    location_id = Column(String(36), nullable=False, index=True)
    created_at = Column(String(40))
    date = Column(Date, nullable=False)
    employee_name = Column(String(255))
    team_name = Column(String(255))
    hours = Column(Float, nullable=False)
    hourly_rate = Column(Float)
    base_hourly_wage = Column(Float)
    labor_cost = Column(Float)
    contract_type = Column(String(100))
    raw_data = Column(JSON)


class EitjeProductivityData(Base):
    """Labor productivity per day, team and location."""
    __tablename__ = "eitje_productivity_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(String(36), nullable=False, index=True)
    location_id = Column(String(36), nullable=False, index=True)
    created_at = Column(String(40))
    date = Column(Date, nullable=False)
    team_name = Column(String(255))
    hours_worked = Column(Float, nullable=False)
    revenue = Column(Float)
    labor_cost = Column(Float)
    labor_cost_percentage = Column(Float)
    productivity_per_hour = Column(Float)
    raw_data = Column(JSON)


class PowerBIPnLData(Base):
    """General-ledger profit-and-loss amounts per month."""
    __tablename__ = "powerbi_pnl_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(String(36), nullable=False, index=True)
    location_id = Column(String(36), index=True)
    created_at = Column(String(40))
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    gl_account = Column(String(255), nullable=False)
    category = Column(String(255))
    subcategory = Column(String(255))
    amount = Column(Float, nullable=False)
    raw_data = Column(JSON)


class ImportRunRecord(Base):
    """One execution of the engine against one file."""
    __tablename__ = "import_runs"

    run_id = Column(String(36), primary_key=True)
    profile = Column(String(50), nullable=False)
    target_table = Column(String(100), nullable=False)
    target_entity_id = Column(String(36))
    file_name = Column(String(500))
    state = Column(String(20), nullable=False)
    header_row_index = Column(Integer)
    total_rows = Column(Integer)
    processed_count = Column(Integer)
    skipped_count = Column(Integer)
    error_count = Column(Integer)
    error_message = Column(Text)
    started_at = Column(DateTime, default=_utcnow)
    completed_at = Column(DateTime)


class ImportAuditEntry(Base):
    """Append-only mapping decisions and row rejections."""
    __tablename__ = "import_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), nullable=False, index=True)
    profile = Column(String(50))
    entry_type = Column(String(30), nullable=False)  # 'mapping_snapshot', 'row_rejection'
    row_index = Column(Integer)
    field = Column(String(100))
    value = Column(Text)
    reason = Column(Text)
    payload = Column(JSON)
    created_at = Column(DateTime, default=_utcnow)


TARGET_MODELS: Dict[str, Type[Base]] = {
    BorkSalesData.__tablename__: BorkSalesData,
    EitjeLaborHours.__tablename__: EitjeLaborHours,
    EitjeProductivityData.__tablename__: EitjeProductivityData,
    PowerBIPnLData.__tablename__: PowerBIPnLData,
}


def create_all_tables(engine: Engine) -> None:
    """Create every table the engine writes to if it does not exist yet."""
    Base.metadata.create_all(engine)
    logger.info("Import tables created/verified: %s", sorted(Base.metadata.tables))
