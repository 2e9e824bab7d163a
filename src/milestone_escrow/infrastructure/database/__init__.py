"""Database infrastructure — engine, ORM models, repositories and the record store."""

from milestone_escrow.infrastructure.database.engine import (
    build_engine,
    close_db,
    get_engine,
    get_session_factory,
    init_db,
)
from milestone_escrow.infrastructure.database.orm_models import (
    Base,
    Milestone,
    Project,
    TransactionRecord,
    VerificationRecord,
)
from milestone_escrow.infrastructure.database.repositories import (
    MilestoneRepository,
    ProjectRepository,
    TransactionRecordRepository,
    VerificationRecordRepository,
)
from milestone_escrow.infrastructure.database.store import SqlRecordStore

__all__ = [
    "Base",
    "Milestone",
    "Project",
    "TransactionRecord",
    "VerificationRecord",
    "MilestoneRepository",
    "ProjectRepository",
    "TransactionRecordRepository",
    "VerificationRecordRepository",
    "SqlRecordStore",
    "build_engine",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
