from __future__ import annotations

from dataclasses import dataclass, field

from regnotify.domain.contracts import MessagingProvider, NotifierRepository, PassImageRenderer, RegistrationSource
from regnotify.domain.pacing import SendPacer
from regnotify.domain.stages import DISPATCH_BATCH_SIZE
from regnotify.domain.use_cases.broadcast import broadcast_pacer
from regnotify.domain.use_cases.dispatch import StageSender
from regnotify.services.config_store import ConfigStore
from regnotify.services.events import EventHub


@dataclass(frozen=True)
class ApiDeps:
    repository: NotifierRepository
    source: RegistrationSource
    provider: MessagingProvider
    pass_renderer: PassImageRenderer
    sender: StageSender
    config_store: ConfigStore
    events: EventHub
    verify_token: str = ""
    country_code: str = "91"
    batch_size: int = DISPATCH_BATCH_SIZE
    broadcast_pacer: SendPacer = field(default_factory=broadcast_pacer)
