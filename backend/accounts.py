from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .errors import AuthError, ConflictError, NotFoundError, ValidationError
from .security import (
    ROLE_ADMIN,
    ROLE_SUPERADMIN,
    ROLE_USER,
    STAFF_ROLES,
    check_email_policy,
    issue_token,
    normalize_email,
)
from .sequences import CUSTOMER_COUNTER, STAFF_COUNTER, next_sequence

SUPERADMIN_MARKER_ID = "superadmin"

# bcrypt only reads the first 72 bytes and bcrypt 5 refuses anything longer.
MAX_PASSWORD_BYTES = 72


def ensure_indexes(db):
    db.principales.create_index("correo", unique=True)
    db.principales.create_index([("rol", 1), ("id_usuario", 1)], unique=True)


# --- Passwords ---


def _encode_password(password: str) -> Optional[bytes]:
    try:
        encoded = password.encode("utf-8")
    except UnicodeEncodeError:
        return None
    return encoded if len(encoded) <= MAX_PASSWORD_BYTES else None


def validate_password(password: str) -> bytes:
    encoded = _encode_password(password)
    if encoded is None:
        raise ValidationError(
            f"La contraseña debe tener como máximo {MAX_PASSWORD_BYTES} bytes "
            "de texto válido"
        )
    return encoded


def hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_ROUNDS", 10)
    hashed = bcrypt.hashpw(validate_password(password), bcrypt.gensalt(rounds))
    return hashed.decode("utf-8")


@lru_cache(maxsize=4)
def _placeholder_hash(rounds: int) -> bytes:
    return bcrypt.hashpw(b"placeholder-password", bcrypt.gensalt(rounds))


def check_password(password: str, stored_hash) -> bool:
    encoded = _encode_password(password)
    if not stored_hash or encoded is None:
        # Unknown account or unusable password: still pay for one comparison.
        rounds = current_app.config.get("BCRYPT_ROUNDS", 10)
        bcrypt.checkpw(b"placeholder-password", _placeholder_hash(rounds))
        return False

    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(encoded, stored_hash)
    except ValueError:
        return False


# --- Serialization ---


def serialize_principal(principal_document) -> Dict[str, object]:
    if not principal_document:
        return {}

    created_at = principal_document.get("fecha")
    return {
        "id": str(principal_document.get("_id")),
        "id_usuario": principal_document.get("id_usuario"),
        "nombreCompleto": principal_document.get("nombre_completo", "") or "",
        "correo": principal_document.get("correo", "") or "",
        "rol": principal_document.get("rol", ROLE_USER),
        "fecha": created_at.isoformat() if isinstance(created_at, datetime) else None,
    }


# --- Registration and login ---


def register(db, full_name, email, password, role: str = ROLE_USER):
    """Create a principal; the route decides ``role``, never the request body."""
    full_name = str(full_name or "").strip()
    email = normalize_email(email)
    password = str(password or "")

    if not full_name or not email or not password:
        raise ValidationError("Todos los campos son requeridos")

    check_email_policy(email, role)

    if db.principales.find_one({"correo": email}):
        raise ConflictError("Usuario ya existe")

    hashed_pw = hash_password(password)
    counter_name = STAFF_COUNTER if role in STAFF_ROLES else CUSTOMER_COUNTER
    sequential_id = next_sequence(db, counter_name)

    principal_document = {
        "id_usuario": sequential_id,
        "nombre_completo": full_name,
        "correo": email,
        "contrasena": hashed_pw,
        "rol": role,
        "fecha": datetime.now(timezone.utc),
    }
    try:
        db.principales.insert_one(principal_document)
    except DuplicateKeyError as exc:
        raise ConflictError("Usuario ya existe") from exc

    current_app.logger.info("Registered %s principal %s", role, email)
    return principal_document


def authenticate(db, email, password) -> Tuple[str, str]:
    email = normalize_email(email)
    password = str(password or "")

    principal = db.principales.find_one({"correo": email}) if email else None
    stored_hash = principal.get("contrasena") if principal else None

    if not check_password(password, stored_hash) or principal is None:
        raise AuthError("Credenciales inválidas", 400)

    return issue_token(principal), principal.get("rol", ROLE_USER)


def bootstrap_superadmin(db, full_name, email, password):
    full_name = str(full_name or "").strip()
    email = normalize_email(email)
    if not full_name or not email or not password:
        raise ValidationError("Todos los campos son requeridos")

    check_email_policy(email, ROLE_SUPERADMIN)
    validate_password(str(password))

    conflict_message = "Superadmin ya existe. Usa /api/auth/iniciar-sesion"
    if db.principales.find_one({"rol": ROLE_SUPERADMIN}):
        raise ConflictError(conflict_message)

    previous_marker = db["setup"].find_one_and_update(
        {"_id": SUPERADMIN_MARKER_ID},
        {"$setOnInsert": {"reclamado": datetime.now(timezone.utc)}},
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    if previous_marker is not None:
        raise ConflictError(conflict_message)

    try:
        return register(db, full_name, email, password, ROLE_SUPERADMIN)
    except Exception:
        db["setup"].delete_one({"_id": SUPERADMIN_MARKER_ID})
        raise


# --- Profiles ---


def _object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def get_profile(db, principal_id, role: Optional[str] = None):
    object_id = _object_id(principal_id)
    query = {"_id": object_id}
    if role:
        query["rol"] = role

    principal = db.principales.find_one(query) if object_id else None
    if not principal:
        raise NotFoundError("Perfil no encontrado")
    return principal


def _apply_principal_patch(db, principal, patch: Dict):
    patch = patch or {}
    full_name = str(patch.get("nombreCompleto") or "").strip()
    email = normalize_email(patch.get("correo"))
    new_password = str(patch.get("contrasena") or "")

    if not full_name and not email and not new_password:
        raise ValidationError(
            "Al menos un campo debe ser proporcionado para actualizar"
        )

    updates: Dict[str, object] = {}
    if full_name and full_name != principal.get("nombre_completo"):
        updates["nombre_completo"] = full_name

    if email and email != principal.get("correo"):
        email_owner = db.principales.find_one(
            {"correo": email, "_id": {"$ne": principal["_id"]}}
        )
        if email_owner:
            raise ConflictError("El correo ya está en uso")
        check_email_policy(email, principal.get("rol", ROLE_USER))
        updates["correo"] = email

    if new_password:
        updates["contrasena"] = hash_password(new_password)

    if not updates:
        raise ValidationError("No hay cambios válidos para actualizar")

    updates["actualizado"] = datetime.now(timezone.utc)
    try:
        db.principales.update_one({"_id": principal["_id"]}, {"$set": updates})
    except DuplicateKeyError as exc:
        raise ConflictError("El correo ya está en uso") from exc

    return db.principales.find_one({"_id": principal["_id"]})


def update_profile(db, principal_id, role: Optional[str], patch: Dict):
    principal = get_profile(db, principal_id, role)
    if principal.get("rol") == ROLE_SUPERADMIN:
        raise AuthError("No se puede editar el superadmin", 403)
    return _apply_principal_patch(db, principal, patch)


# --- Staff management ---


def create_admin(db, full_name, email, password):
    return register(db, full_name, email, password, ROLE_ADMIN)


def list_admins(db) -> List[Dict]:
    return list(db.principales.find({"rol": ROLE_ADMIN}).sort("id_usuario", 1))


def get_admin(db, admin_id: int):
    # Only admin rows match, so the superadmin can never be edited or deleted here.
    admin = db.principales.find_one({"id_usuario": admin_id, "rol": ROLE_ADMIN})
    if not admin:
        raise NotFoundError("Admin no encontrado")
    return admin


def update_admin(db, admin_id: int, patch: Dict):
    admin = get_admin(db, admin_id)
    return _apply_principal_patch(db, admin, patch)


def delete_admin(db, admin_id: int):
    admin = get_admin(db, admin_id)
    db.principales.delete_one({"_id": admin["_id"], "rol": ROLE_ADMIN})
    return admin
