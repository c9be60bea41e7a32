from functools import wraps
from typing import Dict, Iterable, Optional

from flask import current_app, g, request
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import InvalidTokenError

from .errors import AuthError, ConflictError

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"

STAFF_ROLES = {ROLE_ADMIN, ROLE_SUPERADMIN}
ALL_ROLES = {ROLE_USER} | STAFF_ROLES


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALL_ROLES else ROLE_USER


def corporate_domain() -> str:
    return current_app.config["CORPORATE_EMAIL_DOMAIN"]


def is_corporate_email(email: Optional[str], domain: Optional[str] = None) -> bool:
    domain = domain or corporate_domain()
    return normalize_email(email).endswith(f"@{domain}")


def check_email_policy(email: str, role: str, domain: Optional[str] = None):
    """Staff must use the corporate domain and customers must not."""
    domain = domain or corporate_domain()
    corporate = is_corporate_email(email, domain)
    if role in STAFF_ROLES and not corporate:
        raise ConflictError(f"Correo debe ser corporativo @{domain}")
    if role == ROLE_USER and corporate:
        raise ConflictError(
            "Registro solo para clientes. Admins deben ser creados por superadmin."
        )


def issue_token(principal_document) -> str:
    return create_access_token(
        identity=str(principal_document["_id"]),
        additional_claims={"rol": principal_document.get("rol", ROLE_USER)},
    )


def extract_bearer_token(header_value: Optional[str]) -> Optional[str]:
    parts = str(header_value or "").split()
    if len(parts) < 2:
        return None
    return parts[1]


def authorize(
    token: Optional[str], required_roles: Optional[Iterable[str]] = None
) -> Dict[str, str]:
    """Validate ``token`` and check its role against ``required_roles``.

    Returns the principal claims as ``{"id", "rol"}``. Raises ``AuthError``
    with 401 when no token is given and 403 when the signature is invalid,
    the token has expired or the role is not allowed.
    """
    if not token:
        raise AuthError("No token proporcionado", 401)

    try:
        claims = decode_token(token)
    except (InvalidTokenError, JWTExtendedException) as exc:
        raise AuthError("Token inválido", 403) from exc

    role = claims.get("rol")
    allowed = set(required_roles or ())
    if allowed and role not in allowed:
        raise AuthError("Acceso denegado", 403)

    return {"id": claims.get("sub"), "rol": role}


def role_required(*roles: str):
    """Route decorator; with no roles any authenticated principal passes."""
    allowed = {normalize_role(role) for role in roles if role}

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            token = extract_bearer_token(request.headers.get("Authorization"))
            g.principal = authorize(token, allowed)
            return view(*args, **kwargs)

        return wrapper

    return decorator
