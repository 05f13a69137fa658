import logging
import logging.handlers
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_BASE_URL = "https://jaeva.logosenergia.wolfcrm.es"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_DEADLINE = 120.0
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5

logger = logging.getLogger("logos-sips.config")


def _positive_seconds(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    username: Optional[str] = None
    password: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    deadline: float = DEFAULT_DEADLINE
    log_level: str = "INFO"
    log_path: Optional[str] = None

    def url(self, path: str) -> str:
        """Join *path* onto the portal base URL with exactly one slash."""
        base = self.base_url[:-1] if self.base_url.endswith("/") else self.base_url
        if not path.startswith("/"):
            path = "/" + path
        return base + path

    def require_credentials(self) -> None:
        missing = [
            name
            for name, value in (("CRM_USER", self.username), ("CRM_PASS", self.password))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Missing CRM credentials in environment: " + ", ".join(missing)
            )


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment (and a local .env file when present).

    Credentials are not validated here; the pipeline calls
    ``Settings.require_credentials`` before its first request so the HTTP
    handler can still start and report the problem per call.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ

    base_url = (environ.get("CRM_BASE_URL") or DEFAULT_BASE_URL).strip().rstrip("/")
    settings = Settings(
        base_url=base_url,
        username=environ.get("CRM_USER") or None,
        password=environ.get("CRM_PASS") or None,
        request_timeout=_positive_seconds(environ, "SIPS_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        deadline=_positive_seconds(environ, "SIPS_DEADLINE", DEFAULT_DEADLINE),
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        log_path=environ.get("LOG_PATH") or None,
    )
    logger.debug(
        "Loaded settings: base_url=%s user_set=%s timeout=%ss deadline=%ss",
        settings.base_url,
        bool(settings.username),
        settings.request_timeout,
        settings.deadline,
    )
    return settings


def configure_logging(settings: Settings) -> logging.Logger:
    """Attach console (and optional rotating file) output to the ``logos-sips`` logger tree."""

    handlers = [logging.StreamHandler()]
    if settings.log_path:
        try:
            os.makedirs(os.path.dirname(settings.log_path) or ".", exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    settings.log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
                )
            )
        except OSError as exc:
            logger.warning("Cannot log to %s (%s); console only", settings.log_path, exc)

    root = logging.getLogger("logos-sips")
    root.handlers.clear()
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.debug("Logging configured: level=%s file=%s", settings.log_level, settings.log_path)
    return root
