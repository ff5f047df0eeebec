"""
Test configuration: repo root on sys.path, in-memory SQLite per test.

Every test gets a fresh database shared by the repository fixtures and the
API client, so service-level and HTTP-level assertions see the same rows.
"""

import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
  sys.path.insert(0, str(REPO_ROOT))

# keep db.py away from the on-disk default before anything imports it
os.environ["DATABASE_URL"] = "sqlite://"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

import models  # noqa: E402,F401
from db import get_session  # noqa: E402
from main import app  # noqa: E402
from models import Customer  # noqa: E402
from repository import SqlLedgerRepository  # noqa: E402

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def engine():
  engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
  )
  SQLModel.metadata.create_all(engine)
  yield engine
  engine.dispose()


@pytest.fixture
def session(engine):
  with Session(engine) as session:
    yield session


@pytest.fixture
def repo(session):
  return SqlLedgerRepository(session)


@pytest.fixture
def customer(repo):
  """A customer owned by USER."""
  c = repo.add(Customer(user_id=USER, name="Acme Ltd", email="billing@acme.test"))
  repo.commit()
  repo.refresh(c)
  return c


@pytest.fixture
def client(engine):
  def _session():
    with Session(engine) as session:
      yield session

  app.dependency_overrides[get_session] = _session
  yield TestClient(app)
  app.dependency_overrides.clear()


@pytest.fixture
def headers():
  return {"X-User-Id": USER}


