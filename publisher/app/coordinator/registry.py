from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Optional

from publisher.app.coordinator.coordinator import PublishCoordinator
from publisher.app.schemas.status import PublishState


class PublisherRegistry:
    """
    One PublishCoordinator per order number within this process.

    This extends single-flight from "per coordinator" to "per order
    number" for callers sharing the registry. It provides no exclusion
    across processes.

    At most ``max_entries`` coordinators are kept. When a new order
    number arrives at the bound, the least recently used coordinators
    that are not uploading are evicted. In-flight coordinators are never
    evicted, so the registry may exceed the bound while they run.
    """

    def __init__(
        self,
        factory: Callable[[], PublishCoordinator],
        *,
        max_entries: int = 1024,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._factory = factory
        self._max_entries = max_entries
        self._coordinators: "OrderedDict[str, PublishCoordinator]" = OrderedDict()

    def get(self, order_number: str) -> Optional[PublishCoordinator]:
        coordinator = self._coordinators.get(order_number)
        if coordinator is not None:
            self._coordinators.move_to_end(order_number)
        return coordinator

    def get_or_create(self, order_number: str) -> PublishCoordinator:
        coordinator = self.get(order_number)
        if coordinator is None:
            self._evict(self._max_entries - 1)
            coordinator = self._factory()
            self._coordinators[order_number] = coordinator
        return coordinator

    def discard(self, order_number: str) -> bool:
        """Drop an idle or finished coordinator; in-flight ones are kept."""
        coordinator = self._coordinators.get(order_number)
        if coordinator is None or coordinator.state is PublishState.UPLOADING:
            return False
        del self._coordinators[order_number]
        return True

    def _evict(self, keep: int) -> None:
        for order_number in list(self._coordinators):
            if len(self._coordinators) <= keep:
                return
            if self._coordinators[order_number].state is not PublishState.UPLOADING:
                del self._coordinators[order_number]

    def __len__(self) -> int:
        return len(self._coordinators)
