"""
SQL-backed object store.

Uses SQLite with SQLAlchemy by default. Each object is one row in the
``blobs`` table; the integer ``version`` column backs compare-and-swap.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import Column, DateTime, Integer, LargeBinary, String, create_engine, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..errors import ConcurrentModification, StorageUnavailable
from .base import ConditionalStore, ObjectStore

Base = declarative_base()


class Blob(Base):
    """Stored object."""

    __tablename__ = "blobs"

    key = Column(String, primary_key=True)
    body = Column(LargeBinary, nullable=False)
    content_type = Column(String, nullable=False, default="application/octet-stream")
    cache_control = Column(String, nullable=True)
    content_encoding = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def init_database(db_path: Path):
    """
    Create the database file and tables if needed.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy engine
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    return engine


class SqlObjectStore(ObjectStore, ConditionalStore):

    def __init__(self, db_path: Optional[Path] = None, engine=None):
        if engine is None:
            if db_path is None:
                raise ValueError("SqlObjectStore needs a db_path or an engine")
            engine = init_database(db_path)
        else:
            Base.metadata.create_all(engine)
        self.engine = engine
        self.Session = sessionmaker(bind=engine)

    def __repr__(self) -> str:
        return f"SqlObjectStore({self.engine.url!s})"

    def is_available(self) -> bool:
        return True

    def _fetch(self, key: str) -> Optional[Blob]:
        try:
            with self.Session() as session:
                return session.get(Blob, key)
        except OperationalError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}")

    def get_bytes(self, key: str) -> Optional[bytes]:
        blob = self._fetch(key)
        return None if blob is None else blob.body

    def get_bytes_versioned(self, key: str) -> Tuple[Optional[bytes], Optional[str]]:
        blob = self._fetch(key)
        if blob is None:
            return None, None
        return blob.body, str(blob.version)

    def put_bytes(self, key, body, content_type="application/octet-stream",
                  cache_control=None, content_encoding=None) -> None:
        try:
            with self.Session() as session:
                blob = session.get(Blob, key)
                if blob is None:
                    session.add(Blob(
                        key=key,
                        body=body,
                        content_type=content_type,
                        cache_control=cache_control,
                        content_encoding=content_encoding,
                        version=1,
                    ))
                else:
                    blob.body = body
                    blob.content_type = content_type
                    blob.cache_control = cache_control
                    blob.content_encoding = content_encoding
                    blob.version = blob.version + 1
                session.commit()
        except OperationalError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}")

    def put_bytes_if_version(self, key, body, expected_version,
                             content_type="application/octet-stream",
                             cache_control=None, content_encoding=None) -> str:
        try:
            with self.Session() as session:
                if expected_version is None:
                    session.add(Blob(
                        key=key,
                        body=body,
                        content_type=content_type,
                        cache_control=cache_control,
                        content_encoding=content_encoding,
                        version=1,
                    ))
                    try:
                        session.commit()
                    except IntegrityError:
                        session.rollback()
                        raise ConcurrentModification(key, expected_version)
                    return "1"

                expected = int(expected_version)
                result = session.execute(
                    update(Blob)
                    .where(Blob.key == key, Blob.version == expected)
                    .values(
                        body=body,
                        content_type=content_type,
                        cache_control=cache_control,
                        content_encoding=content_encoding,
                        version=expected + 1,
                        updated_at=datetime.now(),
                    )
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise ConcurrentModification(key, expected_version)
                session.commit()
                return str(expected + 1)
        except OperationalError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            with self.Session() as session:
                blob = session.get(Blob, key)
                if blob is not None:
                    session.delete(blob)
                    session.commit()
        except OperationalError as e:
            raise StorageUnavailable(f"Cannot delete {key}: {e}")

    def list_keys(self, prefix: str = "") -> List[str]:
        try:
            with self.Session() as session:
                stmt = select(Blob.key).order_by(Blob.key)
                if prefix:
                    stmt = stmt.where(Blob.key.startswith(prefix, autoescape=True))
                return list(session.scalars(stmt))
        except OperationalError as e:
            raise StorageUnavailable(f"Cannot list {prefix!r}: {e}")
