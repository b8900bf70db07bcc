from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .backends import CollectionBackend, YamlFileBackend
from .config import load_config
from .errors import StoreUnavailable
from .models import PushSubscription

logger = logging.getLogger(__name__)

COLLECTION = "subscriptions"


class SubscriptionRegistry:
    """Durable set of push subscriptions keyed by endpoint."""

    def __init__(
        self,
        backend: CollectionBackend | None = None,
        *,
        path: str | Path | None = None,
    ) -> None:
        if backend is None:
            if path is None:
                path = load_config().get("data_dir")
            backend = YamlFileBackend(path)
        self.backend = backend

    def list(self) -> List[PushSubscription]:
        try:
            items = self.backend.read(COLLECTION)
        except StoreUnavailable:
            logger.exception("Subscription registry unavailable; returning none")
            return []
        subs: List[PushSubscription] = []
        for item in items:
            try:
                subs.append(PushSubscription.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed subscription entry: %r", item)
        return subs

    def get(self, endpoint: str) -> PushSubscription | None:
        if not endpoint:
            return None
        for sub in self.list():
            if sub.endpoint == endpoint:
                return sub
        return None

    def upsert(self, subscription: PushSubscription) -> None:
        """Register ``subscription`` unless its endpoint is already known."""

        def add(items):
            if any(i.get("endpoint") == subscription.endpoint for i in items):
                return items
            return items + [subscription.to_dict()]

        try:
            self.backend.update(COLLECTION, add)
        except StoreUnavailable:
            logger.exception("Subscription registry unavailable; upsert skipped")

    def remove(self, endpoint: str) -> None:
        try:
            self.backend.update(
                COLLECTION,
                lambda items: [i for i in items if i.get("endpoint") != endpoint],
            )
        except StoreUnavailable:
            logger.exception("Subscription registry unavailable; removal skipped")


__all__ = ["SubscriptionRegistry"]
