from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    app_name: str
    environment: Literal['dev', 'prod', 'test']
    cors_origins: str
    postgres_dsn: str
    kafka_bootstrap_servers: str
    deployment_events_topic: str
    deployer_private_key: str
    factory_registry_path: str
    rpc_request_timeout_seconds: float
    deploy_gas_limit: int
    confirmation_timeout_seconds: float
    confirmation_poll_seconds: float
    query_concurrency: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    environment = os.getenv('ENVIRONMENT', 'dev').strip().lower()
    if environment not in {'dev', 'prod', 'test'}:
        environment = 'dev'

    return Settings(
        app_name=os.getenv('APP_NAME', 'tokenforge-api'),
        environment=environment,  # type: ignore[arg-type]
        cors_origins=os.getenv('CORS_ORIGINS', 'http://localhost:3000'),
        postgres_dsn=os.getenv('POSTGRES_DSN', '').strip(),
        kafka_bootstrap_servers=os.getenv('KAFKA_BOOTSTRAP_SERVERS', '').strip(),
        deployment_events_topic=os.getenv('DEPLOYMENT_EVENTS_TOPIC', 'token_deployments'),
        deployer_private_key=os.getenv('DEPLOYER_PRIVATE_KEY', '').strip(),
        factory_registry_path=os.getenv('FACTORY_REGISTRY_PATH', '').strip(),
        rpc_request_timeout_seconds=_env_float('RPC_REQUEST_TIMEOUT_SECONDS', 10.0),
        deploy_gas_limit=_env_int('DEPLOY_GAS_LIMIT', 2_500_000),
        confirmation_timeout_seconds=_env_float('CONFIRMATION_TIMEOUT_SECONDS', 180.0),
        confirmation_poll_seconds=_env_float('CONFIRMATION_POLL_SECONDS', 2.0),
        query_concurrency=max(1, _env_int('QUERY_CONCURRENCY', 8))
    )
