"""Composition root: builds every component once and owns their lifecycle."""
import logging
import uuid

import httpx
import redis.asyncio as redis
import sentry_sdk
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from patchd.cache import CacheManager
from patchd.clock import Clock, utcnow
from patchd.config import Settings, settings as default_settings
from patchd.database import create_engine, create_session_factory
from patchd.errors import PatchdError
from patchd.gateway import RemoteGateway
from patchd.gateway.storage import ObjectStorage, S3ObjectStorage
from patchd.services.lifecycle_service import LifecycleReconciler
from patchd.services.photo_service import PhotoService
from patchd.services.realtime_service import RealtimeBridge
from patchd.services.session_service import SessionAssembler
from patchd.services.social_service import SocialService
from patchd.services.sticker_service import StickerService
from patchd.services.transform_service import TransformController
from patchd.services.user_service import UserService
from patchd.schemas.photo import PhotoRead
from patchd.tasks import TaskSupervisor

logger = logging.getLogger(__name__)


def init_sentry(config: Settings) -> None:
    if not config.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=config.SENTRY_DSN,
        environment=config.ENVIRONMENT,
        traces_sample_rate=0.2 if config.ENVIRONMENT == "production" else 1.0,
        send_default_pii=False,
    )


class PatchdClient:
    """Every service shares one gateway, one set of caches and one task supervisor."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client,
        storage: ObjectStorage,
        clock: Clock = utcnow,
        http_client: httpx.AsyncClient | None = None,
        engine: AsyncEngine | None = None,
        image_format: str | None = None,
    ):
        self.engine = engine
        self.redis = redis_client
        self.http_client = http_client
        self.gateway = RemoteGateway(
            session_factory,
            redis_client,
            storage,
            clock=clock,
            http_client=http_client,
            image_format=image_format,
        )
        self.caches = CacheManager()
        self.tasks = TaskSupervisor()

        self.users = UserService(self.gateway, self.caches)
        self.reconciler = LifecycleReconciler(self.gateway, self.tasks)
        self.sessions = SessionAssembler(self.gateway, self.caches, self.users, self.reconciler)
        self.photos = PhotoService(self.gateway)
        self.realtime = RealtimeBridge(self.gateway)
        self.social = SocialService(self.gateway, self.caches, self.users, self.sessions)
        self.stickers = StickerService(self.gateway)

    @classmethod
    def from_settings(cls, config: Settings | None = None, clock: Clock = utcnow) -> "PatchdClient":
        config = config or default_settings
        logging.getLogger("patchd").setLevel(config.LOG_LEVEL)
        init_sentry(config)

        engine = create_engine(config.DATABASE_URL)
        storage = S3ObjectStorage(
            bucket=config.STORAGE_BUCKET,
            endpoint_url=config.STORAGE_ENDPOINT_URL,
            public_base_url=config.STORAGE_PUBLIC_URL,
        )
        return cls(
            create_session_factory(engine),
            redis.from_url(config.REDIS_URL, decode_responses=True),
            storage,
            clock=clock,
            http_client=httpx.AsyncClient(timeout=30.0),
            engine=engine,
            image_format=config.IMAGE_FORMAT,
        )

    def transform_controller(
        self, photos: list[PhotoRead], viewer_id: uuid.UUID, delete_target=None
    ) -> TransformController:
        controller = TransformController(self.photos, viewer_id, delete_target=delete_target)
        controller.sync(photos)
        return controller

    async def start(self) -> None:
        """Verify connectivity and sweep the signed-in user's expired collages."""
        if self.engine is not None:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        await self.redis.ping()

        if self.gateway.auth.session is None:
            return
        try:
            user_id = self.gateway.auth.current_user_id()
        except PatchdError as exc:
            logger.info("Skipping startup cleanup: %s", exc)
            return
        self.reconciler.schedule_user_cleanup(user_id)

    async def aclose(self) -> None:
        await self.realtime.aclose()
        await self.tasks.aclose()
        await self.caches.clear()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()

    async def __aenter__(self) -> "PatchdClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
