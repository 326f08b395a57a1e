from __future__ import annotations

from dataclasses import dataclass

from regnotify.domain.contracts import NotifierRepository, RegistrationSource
from regnotify.domain.stages import DISPATCH_BATCH_SIZE
from regnotify.domain.use_cases.dispatch import StageSender
from regnotify.services.config_store import ConfigStore


@dataclass(frozen=True)
class WorkerDeps:
    repository: NotifierRepository
    source: RegistrationSource
    sender: StageSender
    config_store: ConfigStore
    batch_size: int = DISPATCH_BATCH_SIZE
