from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .errors import StoreError

CUSTOMER_COUNTER = "clienteId"
STAFF_COUNTER = "usuarioId"
CATEGORY_COUNTER = "categoriaId"
PRODUCT_COUNTER = "productoId"


def next_sequence(db, counter_name: str) -> int:
    """Atomically increment ``counter_name`` and return its new value.

    The counter document is created on first use, so the first value is 1.
    Nothing is reserved when the store call fails.
    """
    try:
        counter = db.counters.find_one_and_update(
            {"_id": counter_name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as exc:
        raise StoreError(f"Error: {exc}") from exc

    return int(counter["seq"])
