"""Polling change feed over the document store.

Handlers subscribe to "documents in a collection matching these filters".
Each ``poll()`` dispatches every currently-matching document to its handler.
Handlers are expected to claim the document (flip the field the filter looks
at) before doing slow work, so that it stops matching on the next poll.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from services.document_store import DocumentStore, Filter, StoreUnavailableError

logger = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], Any]


@dataclass
class Subscription:
    name: str
    collection: str
    filters: List[Filter]
    handler: Handler
    batch_limit: Optional[int] = None
    dispatched: int = field(default=0)
    failures: int = field(default=0)


class ChangeFeed:
    """Dispatches matching documents to subscribed handlers."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.subscriptions: List[Subscription] = []

    def subscribe(self, name: str, collection: str, filters: List[Filter], handler: Handler,
                  batch_limit: Optional[int] = None) -> Subscription:
        subscription = Subscription(name, collection, list(filters), handler, batch_limit)
        self.subscriptions.append(subscription)
        logger.info(f"Change feed subscription '{name}' on {collection} ({len(filters)} filter(s))")
        return subscription

    def poll_subscription(self, subscription: Subscription) -> int:
        """Dispatch matching documents for one subscription.

        Raises:
            StoreUnavailableError: the store could not be queried or a handler lost it
        """
        matches = self.store.query(subscription.collection, subscription.filters, limit=subscription.batch_limit)
        dispatched = 0
        for key, doc in matches:
            try:
                subscription.handler(key, doc)
                dispatched += 1
            except StoreUnavailableError:
                raise
            except Exception as e:
                subscription.failures += 1
                logger.error(f"Handler '{subscription.name}' failed for {key}: {e}", exc_info=True)
        subscription.dispatched += dispatched
        if matches:
            logger.debug(f"Subscription '{subscription.name}' dispatched {dispatched}/{len(matches)} document(s)")
        return dispatched

    def poll(self) -> Dict[str, int]:
        """Run every subscription once. Returns dispatched counts by subscription name."""
        return {sub.name: self.poll_subscription(sub) for sub in self.subscriptions}
