import logging
from contextlib import asynccontextmanager

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from redis.exceptions import RedisError
from sqlalchemy.exc import DBAPIError, IntegrityError, NoResultFound

from patchd.errors import ConflictError, NotFoundError, PatchdError, TransportError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def backend_errors(action: str):
    """Translate backend library exceptions into the patchd error taxonomy."""
    try:
        yield
    except PatchdError:
        raise
    except NoResultFound as exc:
        raise NotFoundError(f"{action}: not found") from exc
    except IntegrityError as exc:
        raise ConflictError(f"{action}: already exists") from exc
    except (DBAPIError, RedisError, BotoCoreError, ClientError, httpx.HTTPError, OSError) as exc:
        logger.warning("%s failed: %s", action, exc)
        raise TransportError(f"{action}: backend unavailable") from exc
