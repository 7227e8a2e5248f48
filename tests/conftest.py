"""Test configuration and fixtures."""

from typing import Any, Dict, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from erection_readiness.config import Settings
from erection_readiness.db import audit_models, models  # noqa: F401
from erection_readiness.db.base import Base
from erection_readiness.db.store import EntityStore
from erection_readiness.engine.enums import EntityName


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False)
    session = TestingSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def store(db_session) -> EntityStore:
    return EntityStore(db_session)


@pytest.fixture
def settings() -> Settings:
    return Settings(log_format="console")


class Seeder:
    """Small factory for upstream records."""

    def __init__(self, store: EntityStore):
        self.store = store

    def _create(self, entity: EntityName, defaults: Dict[str, Any], overrides: Dict[str, Any]):
        return self.store.create(entity, {**defaults, **overrides})

    def project(self, **overrides):
        return self._create(EntityName.PROJECT, {"name": "Warehouse 12"}, overrides)

    def work_package(self, project, **overrides):
        return self._create(
            EntityName.WORK_PACKAGE,
            {"project_id": project.id, "name": "WP-01", "phase": "erection"},
            overrides,
        )

    def task(self, project, work_package=None, **overrides):
        return self._create(
            EntityName.TASK,
            {
                "project_id": project.id,
                "work_package_id": work_package.id if work_package else None,
                "name": "Erect grid A",
                "task_type": "ERECTION",
                "status": "not_started",
            },
            overrides,
        )

    def rfi(self, project, **overrides):
        return self._create(
            EntityName.RFI,
            {
                "project_id": project.id,
                "rfi_number": "12",
                "subject": "Beam splice detail",
                "status": "submitted",
                "is_blocker": True,
            },
            overrides,
        )

    def drawing_set(self, project, **overrides):
        return self._create(
            EntityName.DRAWING_SET,
            {"project_id": project.id, "set_number": "E-100", "title": "Erection plan", "status": "IFA"},
            overrides,
        )

    def drawing_revision(self, drawing_set, **overrides):
        return self._create(
            EntityName.DRAWING_REVISION,
            {
                "project_id": drawing_set.project_id,
                "drawing_set_id": drawing_set.id,
                "revision_number": "1",
                "is_current": True,
            },
            overrides,
        )

    def delivery(self, project, **overrides):
        return self._create(
            EntityName.DELIVERY,
            {
                "project_id": project.id,
                "delivery_number": "D-7",
                "package_name": "Columns L1",
                "delivery_status": "scheduled",
            },
            overrides,
        )


@pytest.fixture
def seed(store) -> Seeder:
    return Seeder(store)


@pytest.fixture
def project(seed):
    return seed.project()


@pytest.fixture
def work_package(seed, project):
    return seed.work_package(project)
