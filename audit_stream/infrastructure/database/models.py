# audit_stream/infrastructure/database/models.py

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


# ---------------------------------------------------------------------------
# Watched entities (business tables whose mutations are captured)
# ---------------------------------------------------------------------------

class User(Base):
    __tablename__ = "User"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(50), server_default=text("'Faculty'"))
    roll_no = Column(String(50), nullable=True)
    marks = Column(Integer, nullable=True)
    createdAt = Column(DateTime, server_default=func.now(), nullable=False)
    updatedAt = Column(DateTime, server_default=func.now(), nullable=False)


class Course(Base):
    __tablename__ = "Course"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    credits = Column(Integer, server_default=text("3"))
    description = Column(Text, nullable=True)
    createdAt = Column(DateTime, server_default=func.now(), nullable=False)
    updatedAt = Column(DateTime, server_default=func.now(), nullable=False)


WATCHED_TABLES = {
    User.__tablename__: User.__table__,
    Course.__tablename__: Course.__table__,
}


# ---------------------------------------------------------------------------
# Audit storage (never watched: capturing these would feed back into itself)
# ---------------------------------------------------------------------------

class AuditLog(Base):
    """ORM model for AuditRecord. Append-only."""

    __tablename__ = "AuditLog"
    __table_args__ = (
        Index("idx_auditlog_timestamp", "timestamp"),
        Index("idx_auditlog_table", "table_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(255), nullable=False)
    operation = Column(String(50), nullable=False)
    user_name = Column(String(255), nullable=False)
    old_data = Column(JSONB, nullable=True)
    new_data = Column(JSONB, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())


class SuspiciousActivity(Base):
    """ORM model for SuspicionAlert. log_id is a plain column, not a foreign key."""

    __tablename__ = "SuspiciousActivity"
    __table_args__ = (
        Index("idx_suspicious_timestamp", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    log_id = Column(Integer, nullable=True)
    message = Column(Text, nullable=False)
    severity = Column(String(50), nullable=False)
    details = Column(JSONB, nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())


AUDIT_TABLES = {
    AuditLog.__tablename__: AuditLog.__table__,
    SuspiciousActivity.__tablename__: SuspiciousActivity.__table__,
}
