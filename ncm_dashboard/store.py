"""
store.py — Document collections on top of SQLAlchemy.

Each document is a JSON payload keyed by a generated id inside a named
collection. The store only knows about ids, payloads and one ordering
timestamp; field naming is the repository's concern.
"""

from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import JSON, Column, DateTime, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ncm_dashboard.errors import NotFoundError, PersistenceError
from ncm_dashboard.fields import TIMESTAMP_FIELDS, UPLOADED_AT_FIELD
from ncm_dashboard.log import get_logger

Base = declarative_base()
logger = get_logger("store")

DELETE_WORKERS = 8


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(32), primary_key=True)
    collection = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)


def _encode_payload(payload: dict[str, Any]) -> dict[str, Any]:
    encoded = {}
    for key, value in payload.items():
        encoded[key] = value.isoformat() if isinstance(value, datetime) else value
    return encoded


def _decode_payload(payload: dict[str, Any]) -> dict[str, Any]:
    decoded = dict(payload)
    for key in TIMESTAMP_FIELDS:
        value = decoded.get(key)
        if isinstance(value, str) and value:
            try:
                decoded[key] = datetime.fromisoformat(value)
            except ValueError:
                pass
    return decoded


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, future=True, **kwargs)
    return create_engine(database_url, echo=False, future=True)


class DocumentStore:
    """Insert/list/update/delete documents grouped in collections."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self.engine = build_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, future=True)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not initialise document store: {exc}") from exc

    def insert(self, collection: str, payload: dict[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        created_at = payload.get(UPLOADED_AT_FIELD)
        if not isinstance(created_at, datetime):
            created_at = datetime.now()
        try:
            with self.SessionLocal() as session:
                session.add(
                    Document(
                        id=document_id,
                        collection=collection,
                        payload=_encode_payload(payload),
                        created_at=created_at,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Insert into {collection} failed: {exc}") from exc
        return document_id

    def get(self, collection: str, document_id: str) -> Optional[dict[str, Any]]:
        try:
            with self.SessionLocal() as session:
                document = session.get(Document, document_id)
                if document is None or document.collection != collection:
                    return None
                return {"id": document.id, **_decode_payload(document.payload)}
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Read from {collection} failed: {exc}") from exc

    def list(
        self,
        collection: str,
        order_by: str = UPLOADED_AT_FIELD,
        direction: str = "desc",
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        if order_by != UPLOADED_AT_FIELD:
            raise ValueError(f"Unsupported ordering field: {order_by}")
        ordering = Document.created_at.desc() if direction == "desc" else Document.created_at.asc()
        statement = (
            select(Document)
            .where(Document.collection == collection)
            .order_by(ordering, Document.id)
            .limit(limit)
        )
        try:
            with self.SessionLocal() as session:
                documents = session.execute(statement).scalars().all()
                return [{"id": document.id, **_decode_payload(document.payload)} for document in documents]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Listing {collection} failed: {exc}") from exc

    def update(
        self,
        collection: str,
        document_id: str,
        partial: dict[str, Any],
        drop_keys: Iterable[str] = (),
    ) -> None:
        """Merge `partial` into the stored payload; `drop_keys` are removed first."""
        dropped = set(drop_keys)
        try:
            with self.SessionLocal() as session:
                document = session.get(Document, document_id)
                if document is None or document.collection != collection:
                    raise NotFoundError(f"Document {document_id} not found in {collection}")
                merged = {key: value for key, value in document.payload.items() if key not in dropped}
                merged.update(_encode_payload(partial))
                document.payload = merged
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Update of {document_id} failed: {exc}") from exc

    def delete(self, collection: str, document_id: str) -> None:
        try:
            with self.SessionLocal() as session:
                document = session.get(Document, document_id)
                if document is not None and document.collection == collection:
                    session.delete(document)
                    session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Delete of {document_id} failed: {exc}") from exc

    def delete_many(self, collection: str, document_ids: Iterable[str]) -> int:
        """Delete each id concurrently; any failure raises one aggregate error after all settle."""
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return 0
        failed: list[str] = []
        with ThreadPoolExecutor(max_workers=min(DELETE_WORKERS, len(ids))) as executor:
            futures = {executor.submit(self.delete, collection, document_id): document_id for document_id in ids}
            for future in as_completed(futures):
                document_id = futures[future]
                try:
                    future.result()
                except PersistenceError as exc:
                    logger.error("Batch delete failed for %s: %s", document_id, exc)
                    failed.append(document_id)
        if failed:
            raise PersistenceError(
                f"Failed to delete {len(failed)} of {len(ids)} documents", failed_ids=failed
            )
        return len(ids)

    def dispose(self) -> None:
        self.engine.dispose()
