"""Application context: the one owner of every long-lived service.

There are no module-level singletons. Build a context, start it, hand its
``data_service`` to whatever needs it, and close it on shutdown::

    async with AppContext.from_config(AppConfig.from_env()) as ctx:
        await ctx.data_service.create_memo({"content": "hello"})
"""

from typing import Any

from .config import AppConfig
from .events import EventBus, LoggingNotifier, Notifier
from .logging import configure_logging, get_logger
from .service import DataService
from .storage import FileLocalStore, LocalStore, StorageFactory, StorageManager, StorageType

logger = get_logger(__name__)


class AppContext:
    def __init__(
        self,
        store: LocalStore,
        factory: StorageFactory,
        notifier: Notifier,
        events: EventBus,
        fallback_type: StorageType = StorageType.BROWSER,
    ):
        self.store = store
        self.factory = factory
        self.notifier = notifier
        self.events = events
        self.manager = StorageManager(factory, store, notifier, fallback_type)
        self.data_service = DataService(self.manager, notifier, events)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        notifier: Notifier | None = None,
        configure_logs: bool = True,
    ) -> "AppContext":
        """Wire every service from ``config``.

        Args:
            config: Data directory, logging and fallback settings
            notifier: Defaults to ``LoggingNotifier``
            configure_logs: Apply ``config``'s logging settings globally
        """
        if configure_logs:
            configure_logging(config.log_config())
        return cls(
            store=FileLocalStore(config.local_store_path),
            factory=StorageFactory(config_defaults=config.storage_defaults()),
            notifier=notifier or LoggingNotifier(),
            events=EventBus(),
            fallback_type=config.fallback_type,
        )

    async def start(self) -> None:
        await self.manager.initialize()
        logger.info("Application context started", storage_type=self.manager.current_type.value)

    async def close(self) -> None:
        await self.manager.destroy()
        logger.info("Application context closed")

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
