"""Route trigger events to the destinations subscribed to them."""

import logging
from concurrent.futures import ThreadPoolExecutor

from ..models.config import Destination
from .sync import DestinationSynchronizer, SyncOutcome

logger = logging.getLogger(__name__)


class TriggerRouter:
    """Sole entry point for synchronizing destinations."""

    def __init__(
        self,
        destinations: dict[str, Destination],
        synchronizer: DestinationSynchronizer,
    ) -> None:
        self.destinations = destinations
        self.synchronizer = synchronizer

    def subscribers(self, trigger_name: str) -> list[Destination]:
        """Destinations subscribed to a trigger, in declaration order."""
        return [d for d in self.destinations.values() if trigger_name in d.triggers]

    def fire(self, trigger_name: str) -> dict[str, SyncOutcome]:
        """Synchronize every destination subscribed to *trigger_name*.

        Destinations are independent and synchronized concurrently. An
        unknown trigger or one without subscribers is a no-op.

        Returns:
            Mapping of destination name to its outcome
        """
        destinations = self.subscribers(trigger_name)
        if not destinations:
            logger.debug("Trigger %r has no subscribers", trigger_name)
            return {}

        logger.info(
            "Trigger %r fired for %s",
            trigger_name, ", ".join(d.name for d in destinations),
        )
        with ThreadPoolExecutor(
            max_workers=len(destinations),
            thread_name_prefix=f"trigger-{trigger_name}",
        ) as pool:
            outcomes = list(pool.map(self.synchronizer.sync, destinations))

        return {outcome.destination: outcome for outcome in outcomes}
