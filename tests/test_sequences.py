from concurrent.futures import ThreadPoolExecutor
from unittest import mock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from backend.errors import StoreError
from backend.sequences import PRODUCT_COUNTER, next_sequence

from .helpers import GAMING_MOUSE, auth_header


def test_first_allocation_creates_counter(db):
    assert next_sequence(db, PRODUCT_COUNTER) == 1
    assert db.counters.find_one({"_id": PRODUCT_COUNTER})["seq"] == 1


def test_allocations_are_distinct_and_increasing(db):
    values = [next_sequence(db, "clienteId") for _ in range(25)]

    assert values == sorted(values)
    assert len(set(values)) == len(values)
    assert values[0] == 1 and values[-1] == 25


def test_concurrent_allocations_never_repeat(db, atomic_find_and_modify):
    def allocate_batch(_):
        return [next_sequence(db, PRODUCT_COUNTER) for _ in range(20)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        batches = list(pool.map(allocate_batch, range(8)))

    values = [value for batch in batches for value in batch]
    assert sorted(values) == list(range(1, 161))
    assert db.counters.find_one({"_id": PRODUCT_COUNTER})["seq"] == 160


def test_counters_are_independent(db):
    next_sequence(db, "clienteId")
    next_sequence(db, "clienteId")

    assert next_sequence(db, "usuarioId") == 1
    assert next_sequence(db, "clienteId") == 3


def test_allocation_is_a_single_atomic_increment():
    fake_db = mock.MagicMock()
    fake_db.counters.find_one_and_update.return_value = {"_id": "productoId", "seq": 7}

    assert next_sequence(fake_db, PRODUCT_COUNTER) == 7

    fake_db.counters.find_one_and_update.assert_called_once()
    args, kwargs = fake_db.counters.find_one_and_update.call_args
    assert args[:2] == ({"_id": PRODUCT_COUNTER}, {"$inc": {"seq": 1}})
    assert kwargs["upsert"] is True
    fake_db.counters.find_one.assert_not_called()
    fake_db.counters.update_one.assert_not_called()


def test_unreachable_store_raises_store_error():
    broken_db = mock.MagicMock()
    broken_db.counters.find_one_and_update.side_effect = ServerSelectionTimeoutError(
        "no servers"
    )

    with pytest.raises(StoreError) as excinfo:
        next_sequence(broken_db, PRODUCT_COUNTER)

    assert excinfo.value.status_code == 500
    assert "no servers" in excinfo.value.message


def test_failed_allocation_creates_no_product(client, superadmin_token, admin_token, db):
    client.post(
        "/api/admin/categorias",
        json={"nombre": "Gaming"},
        headers=auth_header(superadmin_token),
    )

    with mock.patch(
        "backend.catalog.next_sequence", side_effect=StoreError("Error: timeout")
    ):
        response = client.post(
            "/api/productos",
            json=GAMING_MOUSE,
            headers=auth_header(admin_token),
        )

    assert response.status_code == 500
    assert response.get_json() == {"mensaje": "Error: timeout"}
    assert db.productos.count_documents({}) == 0
