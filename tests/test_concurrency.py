import threading
import time

import pytest

from box_organizer.models.box import Box
from box_organizer.models.location import Location
from box_organizer.models.qr_code import QrCode, QrStatus
from box_organizer.schemas.box import BoxUpdate
from box_organizer.schemas.location import LocationCreate, LocationUpdate
from box_organizer.services import boxes, locations, paths, qr_codes
from box_organizer.services.errors import AlreadyAssigned, SiblingConflict
from box_organizer.services.location_lifecycle import delete_location

from conftest import WORKSPACE


def run_concurrently(session_factory, *calls):
    """Run each ``call(session)`` in its own thread and session at the same time."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        session = session_factory()
        try:
            barrier.wait()
            outcomes[index] = call(session)
        except Exception as exc:
            outcomes[index] = exc
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def pause_after_first_call(func, started, delay=0.3):
    """Wrap ``func`` so its first call signals ``started`` and then holds its transaction open."""
    def wrapper(*args, **kwargs):
        result = func(*args, **kwargs)
        if not started.is_set():
            started.set()
            time.sleep(delay)
        return result

    return wrapper


@pytest.mark.parametrize("attempt", range(3))
def test_concurrent_assign_to_two_boxes(db, session_factory, make_box, attempt):
    code = qr_codes.generate_batch(db, WORKSPACE, 1)[0]
    first = make_box("First")
    second = make_box("Second")
    code_id, box_ids = code.id, (first.id, second.id)
    # The fixture session must not hold the database lock while workers run
    db.rollback()

    outcomes = run_concurrently(
        session_factory,
        lambda session: qr_codes.assign(session, code_id, box_ids[0], WORKSPACE).box_id,
        lambda session: qr_codes.assign(session, code_id, box_ids[1], WORKSPACE).box_id,
    )

    winners = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyAssigned)

    db.expire_all()
    stored = db.get(QrCode, code_id)
    assert stored.status == QrStatus.assigned
    assert stored.box_id == winners[0]


def test_concurrent_assign_of_two_codes_to_one_box(db, session_factory, make_box):
    codes = qr_codes.generate_batch(db, WORKSPACE, 2)
    box = make_box()
    code_ids, box_id = [code.id for code in codes], box.id
    db.rollback()

    outcomes = run_concurrently(
        session_factory,
        lambda session: qr_codes.assign(session, code_ids[0], box_id, WORKSPACE).id,
        lambda session: qr_codes.assign(session, code_ids[1], box_id, WORKSPACE).id,
    )

    assert sum(isinstance(outcome, AlreadyAssigned) for outcome in outcomes) == 1
    db.expire_all()
    assert db.query(QrCode).filter(QrCode.box_id == box_id).count() == 1


def test_concurrent_create_of_same_location(db, session_factory):
    data = LocationCreate(name="Garage")

    outcomes = run_concurrently(
        session_factory,
        lambda session: locations.create_location(session, WORKSPACE, data).id,
        lambda session: locations.create_location(session, WORKSPACE, data).id,
    )

    assert sum(isinstance(outcome, SiblingConflict) for outcome in outcomes) == 1
    assert sum(isinstance(outcome, int) for outcome in outcomes) == 1
    assert db.query(Location).filter(Location.path == "garage").count() == 1


def test_readers_never_see_half_renamed_subtree(db, session_factory, make_location):
    garage = make_location("Garage")
    rack = make_location("Rack", parent=garage)
    shelf = make_location("Shelf", parent=rack)
    make_location("Bin", parent=shelf)
    make_location("Tray", parent=rack)
    rack_id = rack.id
    db.rollback()
    old_paths = {"garage.rack", "garage.rack.shelf", "garage.rack.shelf.bin", "garage.rack.tray"}
    new_paths = {path.replace("garage.rack", "garage.storage") for path in old_paths}

    done = threading.Event()
    snapshots = []

    def read_until_done(session):
        while not done.is_set():
            rows = session.query(Location.path).filter(Location.path != "garage").all()
            session.rollback()
            snapshots.append({path for (path,) in rows})
            time.sleep(0.002)
        return len(snapshots)

    def rename(session):
        try:
            return locations.rename_location(
                session, rack_id, WORKSPACE, LocationUpdate(name="Storage")
            ).path
        finally:
            done.set()

    outcomes = run_concurrently(session_factory, read_until_done, rename)

    assert outcomes[1] == "garage.storage"
    assert snapshots
    for snapshot in snapshots:
        assert snapshot in (old_paths, new_paths)


def test_child_created_during_rename_lands_under_new_path(
    db, session_factory, make_location, monkeypatch
):
    garage = make_location("Garage")
    rack = make_location("Rack", parent=garage)
    make_location("Shelf", parent=rack)
    rack_id = rack.id
    db.rollback()

    rebasing = threading.Event()
    monkeypatch.setattr(paths, "rebase", pause_after_first_call(paths.rebase, rebasing))

    def rename(session):
        return locations.rename_location(
            session, rack_id, WORKSPACE, LocationUpdate(name="Storage")
        ).path

    def add_child(session):
        rebasing.wait(timeout=10)
        data = LocationCreate(name="Late", parent_id=rack_id)
        return locations.create_location(session, WORKSPACE, data).path

    outcomes = run_concurrently(session_factory, rename, add_child)

    assert outcomes == ["garage.storage", "garage.storage.late"]
    live = sorted(
        path for (path,) in db.query(Location.path).filter(Location.is_deleted == False)
    )
    assert live == ["garage", "garage.storage", "garage.storage.late", "garage.storage.shelf"]
    for path in live:
        parent = paths.parent_path_of(path)
        assert parent is None or parent in live


def test_box_placed_during_location_delete_is_detached(
    db, session_factory, make_box, make_location, monkeypatch
):
    garage = make_location("Garage")
    box = make_box()
    garage_id, box_id = garage.id, box.id
    db.rollback()

    resolved = threading.Event()
    monkeypatch.setattr(
        boxes, "resolve_location", pause_after_first_call(boxes.resolve_location, resolved)
    )

    def place(session):
        boxes.update_box(session, box_id, WORKSPACE, BoxUpdate(location_id=garage_id))
        return "placed"

    def remove_location(session):
        resolved.wait(timeout=10)
        return delete_location(session, garage_id, WORKSPACE)

    outcomes = run_concurrently(session_factory, place, remove_location)

    assert outcomes == ["placed", 1]
    db.expire_all()
    assert db.get(Location, garage_id).is_deleted is True
    assert db.get(Box, box_id).location_id is None
