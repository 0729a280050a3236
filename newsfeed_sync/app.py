"""Client assembly.

Builds the shared objects of one client process from Settings: the
API client, the query cache, the event channel manager, persisted state
and the session.
"""

import logging
from dataclasses import dataclass

import boto3

from .api_client import NewsApiClient
from .config import Settings, StorageConfig, load_settings
from .events import ConnectionManager
from .local_state import DynamoDBKeyValueStore, KeyValueStore, LocalState, MemoryKeyValueStore
from .logging_setup import setup_logging
from .query_client import QueryClient
from .session import Session

logger = logging.getLogger(__name__)


@dataclass
class NewsApp:
    """Shared collaborators handed to screens."""

    settings: Settings
    queries: QueryClient
    connections: ConnectionManager
    local_state: LocalState
    session: Session

    async def start(self) -> bool:
        """Mark a fresh launch and resume any stored session.

        Returns:
            True when a session was restored
        """
        self.local_state.mark_app_launched()
        return await self.session.restore()

    async def close(self) -> None:
        await self.connections.disconnect()
        await self.queries.close()


def _create_state_store(config: StorageConfig) -> KeyValueStore:
    if not config.table_name:
        logger.info("No state table configured; using in-memory local state")
        return MemoryKeyValueStore()

    dynamodb = boto3.resource(
        "dynamodb",
        region_name=config.region_name or None,
        endpoint_url=config.endpoint_url,
    )
    return DynamoDBKeyValueStore(dynamodb.Table(config.table_name), device_id=config.device_id)


def create_app(settings: Settings | None = None, configure_logging: bool = True) -> NewsApp:
    """Create and wire a NewsApp.

    Args:
        settings: Settings to use (loaded from the environment when None)
        configure_logging: Install the JSON log handler

    Returns:
        NewsApp instance
    """
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(settings.log_level)

    api = NewsApiClient(
        settings.api.base_url,
        token=settings.api.token,
        timeout=settings.api.request_timeout,
    )
    queries = QueryClient()
    connections = ConnectionManager(settings.api.base_url)
    local_state = LocalState(_create_state_store(settings.storage))
    session = Session(api, local_state, connections, queries)

    return NewsApp(
        settings=settings,
        queries=queries,
        connections=connections,
        local_state=local_state,
        session=session,
    )
