# index_service/db/postgres_client.py
import json
from typing import Optional

import structlog
from sqlalchemy import (
    create_engine, text, Engine, Table, MetaData, Column,
    Integer, BigInteger, Boolean, Text, String, DateTime, UniqueConstraint, Index
)
from sqlalchemy.exc import SQLAlchemyError

from index_service.core.config import settings

log = structlog.get_logger(__name__)

_sync_engine: Optional[Engine] = None

metadata = MetaData()

documents_table = Table(
    'documents',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('org_id', String(64), nullable=False),
    Column('tender_id', String(64), nullable=False),
    Column('doc_hash', String(128), nullable=False),
    Column('title', Text),
    Column('mime_type', String(255)),
    Column('bytes', BigInteger, nullable=False, default=0),
    Column('pages', Integer),
    Column('has_text', Boolean),
    Column('storage_bucket', String(255)),
    Column('storage_key', Text),
    Column('status', String(32), nullable=False, default='pending'),
    Column('error', Text),
    Column('created_at', DateTime(timezone=True)),
    Column('updated_at', DateTime(timezone=True)),
    Index('idx_documents_tender_doc_hash', 'tender_id', 'doc_hash'),
)

index_artifacts_table = Table(
    'index_artifacts',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('doc_hash', String(128), nullable=False),
    Column('org_id', String(64), nullable=False),
    Column('tender_id', String(64), nullable=False),
    Column('version', Integer, nullable=False),
    Column('status', String(16), nullable=False),
    Column('storage_key', Text),
    Column('total_chunks', Integer, nullable=False, default=0),
    Column('total_pages', Integer, nullable=False, default=0),
    Column('bytes_approx', BigInteger, nullable=False, default=0),
    Column('created_at', DateTime(timezone=True)),
    Column('updated_at', DateTime(timezone=True)),
    UniqueConstraint('doc_hash', name='uq_index_artifacts_doc_hash'),
)


def get_sync_engine() -> Engine:
    """
    Creates and returns a SQLAlchemy synchronous engine instance.
    Caches the engine globally per process.
    """
    global _sync_engine
    sync_log = log.bind(component="SyncEngine")

    if _sync_engine is None:
        sync_log.info("Creating SQLAlchemy synchronous engine...")
        try:
            _sync_engine = create_engine(
                settings.database_dsn,
                pool_size=5,
                max_overflow=5,
                pool_timeout=30,
                pool_recycle=1800,
                json_serializer=json.dumps,
                json_deserializer=json.loads
            )
            with _sync_engine.connect() as conn_test:
                conn_test.execute(text("SELECT 1"))
            sync_log.info("SQLAlchemy synchronous engine created and tested successfully.")
        except SQLAlchemyError as sa_err:
            sync_log.critical("Failed to create or connect SQLAlchemy synchronous engine", error=str(sa_err), exc_info=True)
            _sync_engine = None
            raise ConnectionError(f"Failed to connect sync engine: {sa_err}") from sa_err
    return _sync_engine


def dispose_sync_engine() -> None:
    global _sync_engine
    if _sync_engine is not None:
        log.info("Disposing SQLAlchemy synchronous engine.")
        _sync_engine.dispose()
        _sync_engine = None
