"""Tests for the escrow store: creation validation, id assignment, lookups."""

import pytest

from milestone_escrow.config import settings
from milestone_escrow.errors import InvalidIndex, NotFound, ValidationError
from milestone_escrow.models.escrow import EscrowAction, EscrowStatus, MilestoneSpec
from milestone_escrow.services.notifications import Notifier
from milestone_escrow.services.store import EscrowStore, specs_from_arrays
from tests.conftest import BENEFICIARY, DEPOSITOR, HARVEST_MILESTONES


def test_create_assigns_sequential_ids(store: EscrowStore) -> None:
    first = store.create("First", BENEFICIARY, DEPOSITOR, 100, [("Only", 100)])
    second = store.create("Second", BENEFICIARY, DEPOSITOR, 200, [("Only", 100)])
    assert (first, second) == (0, 1)
    assert store.count() == 2


def test_create_stores_incomplete_milestones(store: EscrowStore) -> None:
    escrow_id = store.create("Coffee harvest", BENEFICIARY, DEPOSITOR, 1000, HARVEST_MILESTONES)
    record = store.get(escrow_id)

    assert record.title == "Coffee harvest"
    assert record.total_amount == 1000
    assert [m.description for m in record.milestones] == ["Harvest", "Quality", "Ship"]
    assert [m.weight for m in record.milestones] == [40, 30, 30]
    assert all(not m.completed and m.completed_at is None for m in record.milestones)
    assert not (record.funded or record.completed or record.refunded)
    assert record.status == EscrowStatus.CREATED
    assert record.created_at is not None
    assert record.completed_at is None


def test_create_accepts_milestone_specs(store: EscrowStore) -> None:
    escrow_id = store.create(
        "Specs", BENEFICIARY, DEPOSITOR, 10,
        [MilestoneSpec("Design", 50), MilestoneSpec("Build", 50)],
    )
    assert store.get(escrow_id).milestones[1].description == "Build"


def test_weights_must_sum_to_one_hundred(store: EscrowStore) -> None:
    with pytest.raises(ValidationError) as exc:
        store.create("Short", BENEFICIARY, DEPOSITOR, 1000, [("A", 40), ("B", 30), ("C", 20)])
    assert exc.value.constraint == "weight_sum"

    escrow_id = store.create("Exact", BENEFICIARY, DEPOSITOR, 1000, [("A", 40), ("B", 30), ("C", 30)])
    assert escrow_id == 0


def test_weight_sum_over_one_hundred_rejected(store: EscrowStore) -> None:
    with pytest.raises(ValidationError) as exc:
        store.create("Over", BENEFICIARY, DEPOSITOR, 1000, [("A", 60), ("B", 50)])
    assert exc.value.constraint == "weight_sum"


@pytest.mark.parametrize(
    ("kwargs", "constraint"),
    [
        ({"title": ""}, "title"),
        ({"title": "   "}, "title"),
        ({"title": None}, "title"),
        ({"beneficiary": ""}, "beneficiary"),
        ({"beneficiary": None}, "beneficiary"),
        ({"depositor": ""}, "depositor"),
        ({"total_amount": 0}, "total_amount"),
        ({"total_amount": -10}, "total_amount"),
        ({"total_amount": 10.5}, "total_amount"),
        ({"total_amount": True}, "total_amount"),
        ({"milestone_specs": []}, "milestones"),
        ({"milestone_specs": [("Only",)]}, "milestones"),
        ({"milestone_specs": [("", 100)]}, "milestone_description"),
        ({"milestone_specs": [("A", 0), ("B", 100)]}, "milestone_weight"),
        ({"milestone_specs": [("A", -20), ("B", 120)]}, "milestone_weight"),
        ({"milestone_specs": [("A", True), ("B", 99)]}, "milestone_weight"),
    ],
)
def test_create_validation(store: EscrowStore, kwargs: dict, constraint: str) -> None:
    args = {
        "title": "Escrow",
        "beneficiary": BENEFICIARY,
        "depositor": DEPOSITOR,
        "total_amount": 1000,
        "milestone_specs": HARVEST_MILESTONES,
        **kwargs,
    }
    with pytest.raises(ValidationError) as exc:
        store.create(**args)
    assert exc.value.constraint == constraint
    assert exc.value.status_code == 422


def test_failed_create_stores_nothing(store: EscrowStore, notifier: Notifier) -> None:
    with pytest.raises(ValidationError):
        store.create("Bad", BENEFICIARY, DEPOSITOR, 1000, [("A", 99)])
    assert store.count() == 0
    assert notifier.events() == []

    # The failed attempt did not consume an id
    assert store.create("Good", BENEFICIARY, DEPOSITOR, 1000, [("A", 100)]) == 0


def test_title_length_limit(store: EscrowStore) -> None:
    object.__setattr__(settings, "max_title_length", 8)
    with pytest.raises(ValidationError) as exc:
        store.create("Much too long", BENEFICIARY, DEPOSITOR, 1000, [("A", 100)])
    assert exc.value.constraint == "title_length"


def test_milestone_count_limit(store: EscrowStore) -> None:
    object.__setattr__(settings, "max_milestones", 2)
    with pytest.raises(ValidationError) as exc:
        store.create("Many", BENEFICIARY, DEPOSITOR, 1000, HARVEST_MILESTONES)
    assert exc.value.constraint == "milestone_count"


def test_depositor_may_equal_beneficiary(store: EscrowStore) -> None:
    escrow_id = store.create("Self", DEPOSITOR, DEPOSITOR, 1000, [("A", 100)])
    record = store.get(escrow_id)
    assert record.depositor == record.beneficiary == DEPOSITOR


def test_specs_from_arrays() -> None:
    specs = specs_from_arrays(["Harvest", "Ship"], [70, 30])
    assert specs == [MilestoneSpec("Harvest", 70), MilestoneSpec("Ship", 30)]


def test_specs_from_arrays_length_mismatch() -> None:
    with pytest.raises(ValidationError) as exc:
        specs_from_arrays(["Harvest", "Ship"], [100])
    assert exc.value.constraint == "milestone_lengths"


def test_create_emits_notification(store: EscrowStore, notifier: Notifier) -> None:
    escrow_id = store.create("Coffee harvest", BENEFICIARY, DEPOSITOR, 1000, HARVEST_MILESTONES)
    events = notifier.events(escrow_id)
    assert len(events) == 1
    event = events[0]
    assert event.action == EscrowAction.CREATED
    assert event.details == {
        "title": "Coffee harvest",
        "beneficiary": BENEFICIARY,
        "depositor": DEPOSITOR,
        "total_amount": 1000,
    }


@pytest.mark.parametrize("escrow_id", [-1, 1, 99, "0", None])
def test_get_not_found(store: EscrowStore, harvest_id: int, escrow_id: object) -> None:
    with pytest.raises(NotFound):
        store.get(escrow_id)  # type: ignore[arg-type]


@pytest.mark.parametrize("index", [-1, 3, 10])
def test_get_milestone_invalid_index(store: EscrowStore, harvest_id: int, index: int) -> None:
    with pytest.raises(InvalidIndex):
        store.get_milestone(harvest_id, index)


def test_get_milestone_unknown_escrow(store: EscrowStore) -> None:
    with pytest.raises(NotFound):
        store.get_milestone(0, 0)


def test_get_milestone(store: EscrowStore, harvest_id: int) -> None:
    milestone = store.get_milestone(harvest_id, 2)
    assert milestone.description == "Ship"
    assert milestone.weight == 30


def test_page(store: EscrowStore) -> None:
    for i in range(5):
        store.create(f"Escrow {i}", BENEFICIARY, DEPOSITOR, 100, [("A", 100)])
    assert [r.id for r in store.page(1, 2)] == [1, 2]
    assert [r.id for r in store.page(3)] == [3, 4]
    assert store.page(10, 5) == []


def test_snapshot_and_restore(store: EscrowStore, harvest_id: int) -> None:
    snapshot = store.snapshot(harvest_id)
    record = store.get(harvest_id)
    record.funded = True
    record.milestones[0].completed = True

    # Snapshot is independent of the live record
    assert snapshot.funded is False
    assert snapshot.milestones[0].completed is False

    store.restore(snapshot)
    assert record.funded is False
    assert record.milestones[0].completed is False
    assert store.get(harvest_id) is record
