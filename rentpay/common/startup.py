"""One structured log line describing the effective configuration at boot."""

from urllib.parse import urlsplit, urlunsplit

from rentpay.common.config import CommonSettings
from rentpay.common.logging import logger

REDACTED = "<redacted>"
SECRET_SUFFIXES = ("_key", "_secret", "passkey", "_password")


def _strip_credentials(url: str) -> str:
    parts = urlsplit(url)
    if parts.password is None and parts.username is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{REDACTED}@{host}", parts.path, parts.query, parts.fragment))


def startup_summary(config: CommonSettings) -> dict[str, object]:
    """Settings as a dict with secrets masked and DSN credentials removed."""

    summary: dict[str, object] = {}
    for name, value in config.model_dump().items():
        if name.endswith(SECRET_SUFFIXES):
            summary[name] = REDACTED if value else "<unset>"
        elif name.endswith("_url") and isinstance(value, str):
            summary[name] = _strip_credentials(value)
        else:
            summary[name] = value
    return summary


def log_startup_config(config: CommonSettings) -> None:
    logger.info("startup_config=%s", startup_summary(config))
