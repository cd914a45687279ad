"""Environment configuration and source selection.

Only the keys below are recognized; nothing else in the environment changes
behavior. The telemetry source and command sink are chosen here, once, and
handed to the polling controller and dispatcher.
"""
import logging
import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Recognized configuration options."""
    telemetry_source: Literal["SIM", "DYNAMODB", "API"] = "SIM"
    aws_region: str = "us-east-1"
    dynamodb_table: str = "drone-telemetry"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    telemetry_api_url: Optional[str] = None
    api_endpoint: str = "http://localhost:3000/api/v1"
    poll_interval_ms: int = 2000
    scan_limit: int = 100
    stale_after_ms: int = 10000
    port: int = 5000
    secret_key: str = "drone-dashboard-dev-secret"


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %d", key, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %d", key, raw, default)
        return default
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build `Settings` from environment variables (``os.environ`` by default)."""
    env = os.environ if env is None else env
    source = (env.get("TELEMETRY_SOURCE") or "SIM").upper()
    if source not in ("SIM", "DYNAMODB", "API"):
        logger.warning("Unknown TELEMETRY_SOURCE=%r; falling back to SIM", source)
        source = "SIM"
    defaults = Settings()
    return Settings(
        telemetry_source=source,
        aws_region=env.get("AWS_REGION") or defaults.aws_region,
        dynamodb_table=env.get("DYNAMODB_TABLE") or defaults.dynamodb_table,
        aws_access_key_id=env.get("AWS_ACCESS_KEY_ID") or None,
        aws_secret_access_key=env.get("AWS_SECRET_ACCESS_KEY") or None,
        telemetry_api_url=env.get("TELEMETRY_API_URL") or None,
        api_endpoint=env.get("API_ENDPOINT") or defaults.api_endpoint,
        poll_interval_ms=_int(env, "POLL_INTERVAL_MS", defaults.poll_interval_ms),
        scan_limit=_int(env, "SCAN_LIMIT", defaults.scan_limit),
        stale_after_ms=_int(env, "STALE_AFTER_MS", defaults.stale_after_ms),
        port=_int(env, "PORT", defaults.port),
        secret_key=env.get("SECRET_KEY") or defaults.secret_key,
    )


def build_source(settings: Settings):
    """Instantiate the telemetry source named by `settings.telemetry_source`."""
    if settings.telemetry_source == "DYNAMODB":
        from dronedash.sources.dynamodb_source import DynamoDBSource
        logger.info("Reading telemetry from DynamoDB table %s (%s)", settings.dynamodb_table, settings.aws_region)
        return DynamoDBSource(
            table_name=settings.dynamodb_table,
            region=settings.aws_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            limit=settings.scan_limit,
        )
    if settings.telemetry_source == "API":
        from dronedash.sources.api_client import ApiTelemetrySource
        logger.info("Reading telemetry from API %s", settings.telemetry_api_url or settings.api_endpoint)
        return ApiTelemetrySource(build_api_client(settings))

    from dronedash.simulator.drone_sim import SimulatedSource
    logger.info("Using simulated telemetry")
    return SimulatedSource()


def build_api_client(settings: Settings):
    from dronedash.sources.api_client import ApiClient
    return ApiClient(base_url=settings.api_endpoint, telemetry_url=settings.telemetry_api_url)


def build_command_sink(settings: Settings, source):
    """Commands go to the simulator in SIM mode and to the REST API otherwise."""
    if hasattr(source, "send_command"):
        return source
    if hasattr(source, "client"):
        return source.client
    return build_api_client(settings)
