"""
Catalog Refresh Signal

Fire-and-forget notification that a new star schema snapshot is visible, so a
catalog / query layer can re-scan the published tables.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

import structlog

if TYPE_CHECKING:
    from .pipeline import RunReport

logger = structlog.get_logger(__name__)


class CatalogNotifier(ABC):
    """Receives the report of every successful run"""

    @abstractmethod
    def refresh(self, report: "RunReport") -> None:
        ...

    def notify(self, report: "RunReport") -> bool:
        """Send the signal; failures are logged and never propagate."""
        try:
            self.refresh(report)
        except Exception as e:
            logger.error(
                "Catalog refresh signal failed",
                notifier=type(self).__name__,
                run_id=report.run_id,
                error=str(e),
            )
            return False
        return True


class LoggingCatalogNotifier(CatalogNotifier):
    """Default notifier: emits a structured log event operational tooling can act on"""

    def refresh(self, report: "RunReport") -> None:
        logger.info(
            "Catalog refresh requested",
            run_id=report.run_id,
            tables=sorted(report.locations),
            locations=report.locations,
        )


class CallbackCatalogNotifier(CatalogNotifier):
    """Delegates the signal to a callable, e.g. a crawler trigger"""

    def __init__(self, callback: Callable[["RunReport"], None]):
        self.callback = callback

    def refresh(self, report: "RunReport") -> None:
        self.callback(report)
