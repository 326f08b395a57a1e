from __future__ import annotations

from dataclasses import dataclass, field
import logging

from regnotify.domain.contracts import NotifierRepository
from regnotify.domain.models import NotifierConfig

logger = logging.getLogger("runtime")


@dataclass
class ConfigStore:
    """Holds the current notifier configuration snapshot.

    Loaded once at startup and reloaded after every save; consumers take
    ``current`` at the start of a cycle and use that snapshot throughout.
    """

    repository: NotifierRepository
    defaults: NotifierConfig = field(default_factory=NotifierConfig)
    _current: NotifierConfig | None = None

    @property
    def current(self) -> NotifierConfig:
        return self._current if self._current is not None else self.defaults

    async def load(self) -> NotifierConfig:
        stored = await self.repository.load_configuration()
        self._current = stored if stored is not None else self.defaults
        logger.info(
            "notifier configuration loaded",
            extra={
                "count": len(self._current.admin_numbers) + len(self._current.selected_groups),
                "stored": stored is not None,
            },
        )
        return self._current

    async def save(self, config: NotifierConfig) -> NotifierConfig:
        await self.repository.save_configuration(config=config)
        return await self.load()
