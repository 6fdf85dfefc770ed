import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s value %r; falling back to default", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
        if value < 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning("Invalid %s value %r; falling back to default", name, raw)
        return default


GRAPH_API_ENDPOINT = os.getenv("GRAPH_API_ENDPOINT", "https://graph.microsoft.com/v1.0").rstrip("/")


def get_graph_timeout() -> float:
    return _env_float("GRAPH_TIMEOUT_SECONDS", 30.0)


def get_default_stale_days() -> int:
    """Return the staleness window in days used when ``--days`` is omitted."""

    return _env_int("STALE_DAYS", 180)


def get_default_delay() -> float:
    """Return the pause between directory calls used when ``--delay`` is omitted."""

    return _env_float("THROTTLE_DELAY_SECONDS", 0.0)


def require_graph_credentials() -> tuple[str, str, str]:
    """Ensure the app registration credentials are present and return them."""

    required_envs = {
        name: os.getenv(name)
        for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")
    }
    missing = [name for name, value in required_envs.items() if not value]
    if missing:
        joined = ", ".join(missing)
        raise EnvironmentError(f"Missing required environment variables: {joined}")
    return (
        required_envs["AZURE_TENANT_ID"],
        required_envs["AZURE_CLIENT_ID"],
        required_envs["AZURE_CLIENT_SECRET"],
    )
