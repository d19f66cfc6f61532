"""Garbage collection of photos that belong to expired collages."""
import asyncio
import logging
import uuid

from patchd.gateway import RemoteGateway
from patchd.schemas.collage import CleanupReport
from patchd.schemas.photo import PhotoRead
from patchd.services.photo_service import CUTOUT_FOLDER
from patchd.tasks import TaskSupervisor

logger = logging.getLogger(__name__)


class LifecycleReconciler:
    def __init__(self, gateway: RemoteGateway, tasks: TaskSupervisor):
        self.gateway = gateway
        self.tasks = tasks

    def schedule_cleanup(self, collage_id: uuid.UUID) -> asyncio.Task:
        """Fire-and-forget cleanup; the caller never waits on or sees its failure."""
        return self.tasks.spawn(
            self.cleanup_expired_collage(collage_id), name=f"cleanup-{collage_id}"
        )

    def schedule_user_cleanup(
        self, user_id: uuid.UUID, collage_ids: list[uuid.UUID] | None = None
    ) -> asyncio.Task:
        return self.tasks.spawn(
            self.cleanup_expired_collages_for_user(user_id, collage_ids),
            name=f"cleanup-user-{user_id}",
        )

    async def cleanup_expired_collage(self, collage_id: uuid.UUID) -> int:
        """Delete every stored object and photo row of an expired collage.

        Expiry is re-verified by the store before anything is deleted. Running
        it again on a cleaned collage deletes nothing and succeeds.
        Returns the number of photo rows deleted.
        """
        await self.gateway.tables.get_expired_collage(collage_id)

        photos = await self.gateway.tables.list_photos(collage_id)
        if not photos:
            logger.info("No photos to clean up for collage %s", collage_id)
            return 0

        logger.info("Cleaning up %d photos for expired collage %s", len(photos), collage_id)
        await asyncio.gather(*(self._remove_stored_photo(p) for p in photos))

        deleted = await self.gateway.tables.delete_photos_for_collage(collage_id)
        logger.info("Cleaned up collage %s (%d rows)", collage_id, deleted)
        return deleted

    async def _remove_stored_photo(self, photo: PhotoRead) -> None:
        path = self.gateway.storage.path_from_url(photo.image_url, CUTOUT_FOLDER)
        if path is None:
            return
        try:
            await self.gateway.storage.remove(path)
        except Exception as exc:
            # Independent failures: the row deletion still goes ahead
            logger.warning("Failed to remove stored photo %s: %s", path, exc)

    async def cleanup_all_expired_collages(self) -> CleanupReport:
        expired = await self.gateway.tables.list_collages(expired_by=self.gateway.clock())
        if not expired:
            logger.info("No expired collages to clean up")
            return CleanupReport()

        logger.info("Found %d expired collages to clean up", len(expired))
        report = await self._sweep([c.id for c in expired])
        logger.info(
            "Cleanup complete: %d successful, %d failed", report.succeeded, report.failed
        )
        return report

    async def cleanup_expired_collages_for_user(
        self, user_id: uuid.UUID, collage_ids: list[uuid.UUID] | None = None
    ) -> CleanupReport:
        if collage_ids is None:
            collage_ids = await self.gateway.tables.list_membership_collage_ids(user_id)
        if not collage_ids:
            logger.info("No memberships found for user %s", user_id)
            return CleanupReport()

        expired = await self.gateway.tables.list_collages(
            collage_ids, expired_by=self.gateway.clock()
        )
        if not expired:
            logger.info("No expired collages to clean up for user %s", user_id)
            return CleanupReport()

        logger.info("Found %d expired collages for user %s", len(expired), user_id)
        return await self._sweep([c.id for c in expired])

    async def _sweep(self, collage_ids: list[uuid.UUID]) -> CleanupReport:
        report = CleanupReport()
        for collage_id in collage_ids:
            try:
                report.photos_deleted += await self.cleanup_expired_collage(collage_id)
                report.succeeded += 1
            except Exception:
                logger.exception("Failed to clean up collage %s", collage_id)
                report.failed += 1
        return report
