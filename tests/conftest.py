from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base
from db.models import Client, VenueInstallation
from storage.s3 import ObjectInfo, ObjectNotFound, ObjectStoreError


class FakeObjectStore:
    def __init__(self) -> None:
        self.objects: dict[str, ObjectInfo] = {}
        self.signed_puts: list[tuple[str, int]] = []
        self.signed_gets: list[tuple[str, int, str | None]] = []
        self.deleted: list[str] = []
        self.fail_put = False
        self.fail_head: set[str] = set()
        self.fail_sign: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_list = False

    def put(self, key: str, size: int, *, etag: str | None = None, sha256: str | None = None) -> None:
        self.objects[key] = ObjectInfo(
            key=key,
            size=size,
            last_modified=datetime(2025, 3, 1, 12, 0, tzinfo=UTC),
            etag=etag,
            sha256=sha256,
        )

    def issue_signed_put(self, key: str, ttl: int) -> str:
        if self.fail_put:
            raise ObjectStoreError("signing unavailable")
        self.signed_puts.append((key, ttl))
        return f"https://bucket.test/{key}?X-Amz-Expires={ttl}&op=put"

    def issue_signed_get(self, key: str, ttl: int, disposition: str | None = None) -> str:
        if key in self.fail_sign:
            raise ObjectStoreError("signing unavailable")
        self.signed_gets.append((key, ttl, disposition))
        return f"https://bucket.test/{key}?X-Amz-Expires={ttl}&op=get"

    def head(self, key: str) -> ObjectInfo:
        if key in self.fail_head:
            raise ObjectStoreError("throttled")
        if key not in self.objects:
            raise ObjectNotFound(key)
        return self.objects[key]

    def delete(self, key: str) -> None:
        if key in self.fail_delete:
            raise ObjectStoreError("access denied")
        self.deleted.append(key)
        if self.objects.pop(key, None) is None:
            raise ObjectNotFound(key)

    def list_objects(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        if self.fail_list:
            raise ObjectStoreError("list failed")
        keys = sorted(key for key in self.objects if key.startswith(prefix))
        return [self.objects[key] for key in keys[:max_keys]]


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture()
def make_venue(session_factory):
    def _make(
        contract_method: str | None = "per_video",
        retention_days: int | None = 5,
        client_id=None,
    ) -> tuple:
        with session_factory() as session:
            if client_id is None:
                client = Client(id=uuid4(), legal_name="Arena Ltda", retention_days=retention_days)
                session.add(client)
                session.flush()
                client_id = client.id
            venue = VenueInstallation(
                id=uuid4(),
                client_id=client_id,
                venue_name="Quadra 1",
                contract_method=contract_method,
            )
            session.add(venue)
            session.commit()
            return client_id, venue.id

    return _make
