"""Keeps a displayed photo list fresh while any participant edits the canvas."""
import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable

import sentry_sdk

from patchd.errors import PatchdError
from patchd.gateway import RemoteGateway
from patchd.schemas.photo import PhotoRead

logger = logging.getLogger(__name__)

PhotosCallback = Callable[[list[PhotoRead]], Awaitable[None] | None]


class Subscription:
    """A cancellable per-collage subscription.

    Cancelling stops further callbacks and releases the channel.
    """

    def __init__(self, collage_id: uuid.UUID):
        self.collage_id = collage_id
        self.ready = asyncio.Event()
        self.task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    async def wait_ready(self, timeout: float | None = 5.0) -> None:
        """Wait until the channel is open (or the subscription has ended)."""
        await asyncio.wait_for(self.ready.wait(), timeout)

    def cancel(self) -> None:
        if self.task is not None:
            self.task.cancel()

    async def aclose(self) -> None:
        self.cancel()
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class RealtimeBridge:
    def __init__(self, gateway: RemoteGateway):
        self.gateway = gateway
        self._subscriptions: set[Subscription] = set()

    def subscribe(self, collage_id: uuid.UUID, on_change: PhotosCallback) -> Subscription:
        """Re-fetch the full ordered photo list on every change to the collage.

        Pushed events only say that something changed; the complete list is
        read back each time instead of merging deltas. Subscriptions to the
        same collage are independent and each re-fetches on every event.
        """
        subscription = Subscription(collage_id)
        subscription.task = asyncio.create_task(
            self._run(subscription, on_change), name=f"photos-{collage_id}"
        )
        self._subscriptions.add(subscription)
        subscription.task.add_done_callback(lambda _: self._subscriptions.discard(subscription))
        return subscription

    async def _run(self, subscription: Subscription, on_change: PhotosCallback) -> None:
        collage_id = subscription.collage_id
        try:
            async with self.gateway.channels.listen(collage_id) as changes:
                subscription.ready.set()
                async for change in changes:
                    logger.debug("Photo %s on collage %s", change.event, collage_id)
                    await self._refresh(collage_id, on_change)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Photo subscription for %s ended: %s", collage_id, exc)
            sentry_sdk.capture_exception(exc)
        finally:
            subscription.ready.set()

    async def _refresh(self, collage_id: uuid.UUID, on_change: PhotosCallback) -> None:
        try:
            photos = await self.gateway.tables.list_photos(collage_id)
        except PatchdError as exc:
            logger.warning("Error fetching updated photos for %s: %s", collage_id, exc)
            return

        try:
            result = on_change(photos)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Photo update callback failed for collage %s", collage_id)

    async def aclose(self) -> None:
        """Cancel every open subscription."""
        subscriptions = list(self._subscriptions)
        await asyncio.gather(*(s.aclose() for s in subscriptions))
