"""Collaborators and per-run context handed to every regulatory stage."""

from dataclasses import dataclass, field
from typing import List, Optional

from ..cancellation import CancellationToken
from ..events import EventChannel
from ..interfaces import DocumentFetcher, RegulatorPortal, RegulatoryStore, SearchProvider
from .constants import REGULATOR_CONFIGS, RegulatorConfig


@dataclass
class RegulatoryServices:
    """External capabilities used by the sub-pipeline, injected by the caller."""

    search: SearchProvider
    fetcher: DocumentFetcher
    store: RegulatoryStore
    portal: Optional[RegulatorPortal] = None
    portal_concurrency: int = 4


@dataclass
class StageContext:
    channel: EventChannel
    services: RegulatoryServices
    cancel: CancellationToken = field(default_factory=CancellationToken)
    configs: List[RegulatorConfig] = field(default_factory=lambda: list(REGULATOR_CONFIGS))

    @property
    def run_id(self) -> str:
        return self.channel.run_id

    def checkpoint(self) -> None:
        """Stop before the next external call if the run was cancelled."""
        self.cancel.raise_if_cancelled()
