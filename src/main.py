"""
Application wiring for rolekeeper.

Builds the configured store backend, the convergence engine and the
instance controller, and tears them down again.
"""

import logging
from typing import Optional

from config import Config, get_config
from controller import InstanceReconciler
from db import DatabaseManager
from events import EventBus
from kube import KubernetesStore, load_api_client
from objects.reconcile import Reconciler
from store import MemoryStore, PostgresStore, StoreClient

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT
    )


class Application:
    """Owns the store connection and the reconcilers built on top of it."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db: Optional[DatabaseManager] = None
        self.store: Optional[StoreClient] = None
        self.event_bus = EventBus()
        self.reconciler: Optional[Reconciler] = None
        self.controller: Optional[InstanceReconciler] = None
        self._kube_store: Optional[KubernetesStore] = None

    async def _connect_database(self) -> DatabaseManager:
        db_config = self.config.database
        db_config.require_password()
        db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await db.connect()
        return db

    async def _build_store(self) -> StoreClient:
        backend = self.config.store.backend
        if backend == "memory":
            return MemoryStore()

        if backend == "postgres":
            self.db = await self._connect_database()
            await self.db.initialize_schema()
            return PostgresStore(self.db)

        api_client = await load_api_client(
            in_cluster=self.config.store.kube_in_cluster,
            kubeconfig=self.config.store.kubeconfig,
        )
        self._kube_store = KubernetesStore(api_client)
        return self._kube_store

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info(f"Initializing rolekeeper ({self.config.store.backend} store)")
        self.store = await self._build_store()
        self.reconciler = Reconciler(
            self.store,
            event_bus=self.event_bus,
            timeout=self.config.store.timeout,
        )
        self.controller = InstanceReconciler(self.reconciler, self.config.controller)
        logger.info("All components initialized")

    async def migrate(self) -> int:
        """Connect to PostgreSQL and apply pending migrations only."""
        db = await self._connect_database()
        try:
            return await db.initialize_schema()
        finally:
            await db.close()

    async def close(self) -> None:
        """Release store connections."""
        if self._kube_store is not None:
            await self._kube_store.close()
            self._kube_store = None
        if self.db is not None:
            await self.db.close()
            self.db = None
        logger.info("rolekeeper stopped")
