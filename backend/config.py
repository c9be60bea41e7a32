import logging
import os
import secrets
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URI = "mongodb://localhost:27017/srrobot"
DEFAULT_CORPORATE_DOMAIN = "srrobot.com"
DEFAULT_SECRET_FILE = os.path.join("instance", "jwt_secret")


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw_value = os.getenv(name, str(default))
    try:
        return max(minimum, int(raw_value))
    except (TypeError, ValueError):
        return default


def _flag_env(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def _split_origins(raw_value: Optional[str]) -> List[str]:
    origins = []
    for origin in (raw_value or "").split(","):
        trimmed = origin.strip()
        if trimmed:
            origins.append(trimmed)
    return origins


def load_or_create_secret(secret_file: str) -> str:
    """Return the persisted signing secret, generating and saving one if needed.

    The secret survives restarts so tokens issued before a restart stay valid.
    """
    try:
        with open(secret_file, "r", encoding="utf-8") as handle:
            stored = handle.read().strip()
        if stored:
            return stored
    except FileNotFoundError:
        pass

    secret = secrets.token_hex(32)
    directory = os.path.dirname(secret_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(secret_file, "w", encoding="utf-8") as handle:
        handle.write(secret)
    try:
        os.chmod(secret_file, 0o600)
    except OSError as exc:
        logger.warning("Unable to restrict permissions on %s: %s", secret_file, exc)

    logger.warning(
        "JWT_SECRET not configured. Generated one and saved it to %s "
        "(copy it to .env): %s",
        secret_file,
        secret,
    )
    return secret


class Settings:
    """Process-wide configuration, loaded once and handed to ``create_app``."""

    def __init__(
        self,
        mongo_uri: str = DEFAULT_MONGO_URI,
        jwt_secret: Optional[str] = None,
        jwt_secret_file: str = DEFAULT_SECRET_FILE,
        token_lifetime: timedelta = timedelta(hours=1),
        corporate_domain: str = DEFAULT_CORPORATE_DOMAIN,
        cors_origins: Optional[List[str]] = None,
        trusted_proxy_hops: int = 1,
        port: int = 3000,
        bcrypt_rounds: int = 10,
        debug: bool = False,
    ):
        self.mongo_uri = mongo_uri
        self.jwt_secret_file = jwt_secret_file
        self.jwt_secret = jwt_secret or load_or_create_secret(jwt_secret_file)
        self.token_lifetime = token_lifetime
        self.corporate_domain = corporate_domain.strip().lower().lstrip("@")
        self.cors_origins = cors_origins or ["http://localhost:5173"]
        self.trusted_proxy_hops = trusted_proxy_hops
        self.port = port
        self.bcrypt_rounds = bcrypt_rounds
        self.debug = debug

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        return cls(
            mongo_uri=os.getenv("MONGO_URI", DEFAULT_MONGO_URI) or DEFAULT_MONGO_URI,
            jwt_secret=(os.getenv("JWT_SECRET") or "").strip() or None,
            jwt_secret_file=os.getenv("JWT_SECRET_FILE", DEFAULT_SECRET_FILE)
            or DEFAULT_SECRET_FILE,
            token_lifetime=timedelta(hours=_int_env("JWT_ACCESS_TOKEN_HOURS", 1, 1)),
            corporate_domain=os.getenv(
                "CORPORATE_EMAIL_DOMAIN", DEFAULT_CORPORATE_DOMAIN
            )
            or DEFAULT_CORPORATE_DOMAIN,
            cors_origins=_split_origins(os.getenv("CORS_ALLOWED_ORIGINS")),
            trusted_proxy_hops=_int_env("TRUSTED_PROXY_HOPS", 1),
            port=_int_env("PORT", 3000, 1),
            # bcrypt refuses fewer than 4 rounds
            bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 10, 4),
            debug=_flag_env("FLASK_DEBUG"),
        )
