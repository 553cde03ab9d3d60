from dataclasses import dataclass

from ..config import Settings
from ..domain.collaborators import Collaborators
from ..domain.pricing import ServiceCatalog
from ..domain.repositories import UnitOfWorkFactory


@dataclass
class EngineContext:
    """Everything the booking, reschedule and cancellation flows need to run."""

    uow_factory: UnitOfWorkFactory
    catalog: ServiceCatalog
    collaborators: Collaborators
    settings: Settings
