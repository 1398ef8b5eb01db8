import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from box_organizer.database import build_engine, init_db  # noqa: E402
from box_organizer.schemas.box import BoxCreate  # noqa: E402
from box_organizer.schemas.location import LocationCreate  # noqa: E402
from box_organizer.services import boxes, locations  # noqa: E402


WORKSPACE = 1
OTHER_WORKSPACE = 2


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'organizer.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_location(db):
    def _make(name, parent=None, workspace_id=WORKSPACE, description=None):
        data = LocationCreate(
            name=name,
            description=description,
            parent_id=parent.id if parent is not None else None,
        )
        return locations.create_location(db, workspace_id, data)

    return _make


@pytest.fixture
def make_box(db):
    def _make(name="Winter clothes", workspace_id=WORKSPACE, **fields):
        return boxes.create_box(db, workspace_id, BoxCreate(name=name, **fields))

    return _make
