from datetime import datetime, timezone
import os

from sqlalchemy import create_engine, DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.types import TypeDecorator

# Allow overriding database via environment.
# Default is a lightweight local sqlite DB.
SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./aftermeet.db")


def build_engine(url: str) -> Engine:
	"""Create an engine; sqlite connections are shared by worker threads."""
	if url.startswith("sqlite"):
		return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
	return create_engine(url, pool_pre_ping=True)


engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
	pass


class UTCDateTime(TypeDecorator):
	"""Timezone-aware UTC datetimes on every backend.

	SQLite drops tzinfo, so values are stored as naive UTC and re-tagged on load.
	"""
	impl = DateTime
	cache_ok = True

	def process_bind_param(self, value, dialect):
		if value is None:
			return None
		if value.tzinfo is None:
			value = value.replace(tzinfo=timezone.utc)
		return value.astimezone(timezone.utc).replace(tzinfo=None)

	def process_result_value(self, value, dialect):
		if value is None:
			return None
		if isinstance(value, str):
			value = datetime.fromisoformat(value)
		if value.tzinfo is None:
			return value.replace(tzinfo=timezone.utc)
		return value.astimezone(timezone.utc)
