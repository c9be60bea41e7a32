import math
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from flask import current_app
from pymongo.errors import DuplicateKeyError

from .errors import ConflictError, NotFoundError, PreconditionFailed, ValidationError
from .events import PRODUCT_CREATED
from .sequences import CATEGORY_COUNTER, PRODUCT_COUNTER, next_sequence

MAX_PRICE = 10000
DEFAULT_RATING = 4.5

REQUIRED_PRODUCT_FIELDS = (
    "name",
    "category",
    "price",
    "image",
    "description",
    "characteristics",
    "productCode",
)

TRUE_STRINGS = {"true", "1", "yes", "si", "sí", "on"}


def ensure_indexes(db):
    db.categorias.create_index("nombre", unique=True)
    db.categorias.create_index("id_categoria", unique=True)
    db.productos.create_index("id_producto", unique=True)
    db.productos.create_index("categoria")


# --- Helpers ---


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc) and " " not in value


def serialize_category(category_document) -> Dict[str, object]:
    if not category_document:
        return {}
    return {
        "id_categoria": category_document.get("id_categoria"),
        "nombre": category_document.get("nombre", ""),
        "descripcion": category_document.get("descripcion", "") or "",
    }


def serialize_product(product_document) -> Dict[str, object]:
    if not product_document:
        return {}

    created_at = product_document.get("created_at")
    return {
        "id_producto": product_document.get("id_producto"),
        "categoria": product_document.get("categoria", ""),
        "nombre": product_document.get("nombre", ""),
        "price": product_document.get("price"),
        "originalPrice": product_document.get("original_price"),
        "discount": product_document.get("discount"),
        "image": product_document.get("image", ""),
        "description": product_document.get("description", ""),
        "characteristics": product_document.get("characteristics", ""),
        "productCode": product_document.get("product_code", ""),
        "rating": product_document.get("rating", DEFAULT_RATING),
        "reviews": product_document.get("reviews", 0),
        "inStock": bool(product_document.get("in_stock", True)),
        "featured": bool(product_document.get("featured", False)),
        "createdAt": created_at.isoformat()
        if isinstance(created_at, datetime)
        else None,
    }


# --- Categories ---


def list_categories(db) -> List[Dict]:
    return list(db.categorias.find().sort("id_categoria", 1))


def get_category(db, category_id: int):
    category = db.categorias.find_one({"id_categoria": category_id})
    if not category:
        raise NotFoundError("Categoría no encontrada")
    return category


def create_category(db, name, description=None):
    name = clean_text(name)
    if not name:
        raise ValidationError("El nombre de la categoría es requerido")

    if db.categorias.find_one({"nombre": name}):
        raise ConflictError("Categoría ya existe")

    category_document = {
        "id_categoria": next_sequence(db, CATEGORY_COUNTER),
        "nombre": name,
        "descripcion": clean_text(description),
    }
    try:
        db.categorias.insert_one(category_document)
    except DuplicateKeyError as exc:
        raise ConflictError("Categoría ya existe") from exc

    current_app.logger.info("Created category %s", name)
    return category_document


def update_category(db, category_id: int, payload: Dict):
    payload = payload or {}
    name = clean_text(payload.get("nombre"))
    description_given = payload.get("descripcion") is not None

    if not name and not is_present(payload.get("descripcion")):
        raise ValidationError(
            "Al menos un campo debe ser proporcionado para actualizar"
        )

    category = get_category(db, category_id)

    updates: Dict[str, str] = {}
    if name and name != category.get("nombre"):
        name_owner = db.categorias.find_one({"nombre": name})
        if name_owner and name_owner.get("id_categoria") != category_id:
            raise ConflictError("El nombre de categoría ya está en uso")
        updates["nombre"] = name

    if description_given:
        description = clean_text(payload.get("descripcion"))
        if description != category.get("descripcion", ""):
            updates["descripcion"] = description

    if not updates:
        raise ValidationError("No hay cambios válidos para actualizar")

    try:
        db.categorias.update_one({"id_categoria": category_id}, {"$set": updates})
    except DuplicateKeyError as exc:
        raise ConflictError("El nombre de categoría ya está en uso") from exc

    return db.categorias.find_one({"id_categoria": category_id})


def delete_category(db, category_id: int):
    category = get_category(db, category_id)
    category_name = category.get("nombre", "")

    products_in_use = db.productos.count_documents({"categoria": category_name})
    if products_in_use > 0:
        raise PreconditionFailed(
            f'No se puede eliminar la categoría "{category_name}" porque está en uso '
            f"por {products_in_use} productos"
        )

    db.categorias.delete_one({"id_categoria": category_id})
    current_app.logger.info("Deleted category %s", category_name)
    return category


# --- Products ---


def validate_product_payload(db, payload: Dict) -> Dict[str, object]:
    """Run the product checks in order and return the cleaned fields.

    Optional fields appear in the result only when the payload carries them.
    """
    payload = payload or {}

    if not all(is_present(payload.get(field)) for field in REQUIRED_PRODUCT_FIELDS):
        raise ValidationError("Todos los campos requeridos deben estar presentes")

    price = parse_number(payload.get("price"))
    if price is None or price <= 0 or price > MAX_PRICE:
        raise ValidationError("El precio debe ser un número entre 0.01 y 10000")

    fields: Dict[str, object] = {
        "nombre": clean_text(payload.get("name")),
        "categoria": clean_text(payload.get("category")),
        "price": price,
        "image": clean_text(payload.get("image")),
        "description": clean_text(payload.get("description")),
        "characteristics": clean_text(payload.get("characteristics")),
        "product_code": clean_text(payload.get("productCode")),
    }

    if is_present(payload.get("discount")):
        discount = parse_number(payload.get("discount"))
        if discount is None or discount < 0 or discount > 100:
            raise ValidationError("El descuento debe ser un número entre 0 y 100")
        fields["discount"] = discount

    if is_present(payload.get("originalPrice")):
        original_price = parse_number(payload.get("originalPrice"))
        if original_price is None or original_price <= 0:
            raise ValidationError("El precio original debe ser un número positivo")
        fields["original_price"] = original_price

    if not is_valid_url(fields["image"]):
        raise ValidationError("La URL de la imagen es inválida")

    if not db.categorias.find_one({"nombre": fields["categoria"]}):
        raise ValidationError(f'La categoría "{fields["categoria"]}" no existe')

    if payload.get("inStock") is not None:
        fields["in_stock"] = parse_flag(payload.get("inStock"))
    if payload.get("featured") is not None:
        fields["featured"] = parse_flag(payload.get("featured"))

    return fields


def list_products(db) -> List[Dict]:
    return list(db.productos.find().sort("id_producto", 1))


def get_product(db, product_id: int):
    product = db.productos.find_one({"id_producto": product_id})
    if not product:
        raise NotFoundError("Producto no encontrado")
    return product


def create_product(db, payload: Dict, bus=None):
    fields = validate_product_payload(db, payload)

    product_document = {
        "id_producto": next_sequence(db, PRODUCT_COUNTER),
        **fields,
        "rating": DEFAULT_RATING,
        "reviews": 0,
        "created_at": datetime.now(timezone.utc),
    }
    product_document.setdefault("in_stock", True)
    product_document.setdefault("featured", False)

    db.productos.insert_one(product_document)
    current_app.logger.info(
        "Created product %s (%s)", product_document["id_producto"], fields["nombre"]
    )

    if bus is not None:
        bus.publish(PRODUCT_CREATED, serialize_product(product_document))
    return product_document


def update_product(db, product_id: int, payload: Dict):
    fields = validate_product_payload(db, payload)

    product = get_product(db, product_id)
    db.productos.update_one({"_id": product["_id"]}, {"$set": fields})
    return db.productos.find_one({"_id": product["_id"]})


def delete_product(db, product_id: int):
    product = get_product(db, product_id)
    db.productos.delete_one({"_id": product["_id"]})
    current_app.logger.info("Deleted product %s", product_id)
    return product
