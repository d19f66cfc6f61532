"""Optimistic drag/rotate/scale state, committed once per gesture.

Intermediate gesture events only touch local display state. Ending a gesture
issues exactly one commit with the final transform, and the baseline moves
to that value whether or not the commit reaches the backend. A failed commit
is not retried; the next gesture on the photo carries the state forward.
Concurrent commits from different devices are last-write-wins.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field, replace

from patchd.errors import PatchdError
from patchd.schemas.photo import PhotoRead
from patchd.services.photo_service import PhotoService

logger = logging.getLogger(__name__)

# Hit box used to test a dragged photo against the delete drop target
PHOTO_HIT_SIZE = 100.0


class Gesture(str, enum.Enum):
    DRAG = "drag"
    ROTATE = "rotate"
    SCALE = "scale"


class GestureOutcome(str, enum.Enum):
    COMMITTED = "committed"
    COMMIT_FAILED = "commit_failed"
    DELETED = "deleted"
    DELETE_REFUSED = "delete_refused"
    DELETE_FAILED = "delete_failed"


@dataclass(frozen=True)
class Transform:
    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0  # degrees
    scale: float = 1.0

    @classmethod
    def of(cls, photo: PhotoRead) -> "Transform":
        return cls(photo.position_x, photo.position_y, photo.rotation, photo.scale)

    def translated(self, dx: float, dy: float) -> "Transform":
        return replace(self, x=self.x + dx, y=self.y + dy)

    def rotated(self, degrees: float) -> "Transform":
        return replace(self, rotation=self.rotation + degrees)

    def scaled(self, factor: float) -> "Transform":
        return replace(self, scale=self.scale * factor)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def around(cls, cx: float, cy: float, size: float) -> "Rect":
        return cls(cx - size / 2, cy - size / 2, size, size)

    def intersects(self, other: "Rect") -> bool:
        return (
            self.x < other.x + other.width
            and other.x < self.x + self.width
            and self.y < other.y + other.height
            and other.y < self.y + self.height
        )


@dataclass
class PhotoGestureState:
    photo_id: uuid.UUID
    owner_id: uuid.UUID
    committed: Transform
    display: Transform
    gesture: Gesture | None = None
    baseline: Transform | None = None

    @property
    def idle(self) -> bool:
        return self.gesture is None


@dataclass
class GestureResult:
    photo_id: uuid.UUID
    gesture: Gesture
    outcome: GestureOutcome
    transform: Transform
    error: PatchdError | None = field(default=None)


class TransformController:
    """Per-canvas gesture state for every photo the viewer can manipulate."""

    def __init__(
        self,
        photos: PhotoService,
        viewer_id: uuid.UUID,
        delete_target: Rect | None = None,
    ):
        self.photos = photos
        self.viewer_id = viewer_id
        self.delete_target = delete_target
        self._states: dict[uuid.UUID, PhotoGestureState] = {}

    def state(self, photo_id: uuid.UUID) -> PhotoGestureState:
        try:
            return self._states[photo_id]
        except KeyError:
            raise KeyError(f"Photo {photo_id} is not on this canvas") from None

    def display_transform(self, photo_id: uuid.UUID) -> Transform:
        return self.state(photo_id).display

    def sync(self, photos: list[PhotoRead]) -> None:
        """Adopt server transforms for idle photos; gestures in flight keep local state."""
        present = {p.id for p in photos}
        for photo_id in list(self._states):
            if photo_id not in present and self._states[photo_id].idle:
                del self._states[photo_id]

        for photo in photos:
            state = self._states.get(photo.id)
            server = Transform.of(photo)
            if state is None:
                self._states[photo.id] = PhotoGestureState(
                    photo_id=photo.id, owner_id=photo.user_id, committed=server, display=server
                )
            elif state.idle:
                state.committed = server
                state.display = server

    def begin(self, photo_id: uuid.UUID, gesture: Gesture) -> PhotoGestureState:
        state = self.state(photo_id)
        if state.gesture is None:
            state.baseline = state.committed
        elif state.gesture != gesture:
            # Switching gestures mid-flight keeps the uncommitted progress
            logger.debug("Photo %s switched from %s to %s", photo_id, state.gesture, gesture)
            state.baseline = state.display
        state.gesture = gesture
        return state

    def _active(self, photo_id: uuid.UUID, gesture: Gesture) -> PhotoGestureState:
        state = self.state(photo_id)
        if state.gesture != gesture:
            state = self.begin(photo_id, gesture)
        return state

    def drag(self, photo_id: uuid.UUID, dx: float, dy: float) -> Transform:
        """Cumulative translation since the drag began."""
        state = self._active(photo_id, Gesture.DRAG)
        state.display = state.baseline.translated(dx, dy)
        return state.display

    def rotate(self, photo_id: uuid.UUID, degrees: float) -> Transform:
        """Cumulative rotation since the rotation began."""
        state = self._active(photo_id, Gesture.ROTATE)
        state.display = state.baseline.rotated(degrees)
        return state.display

    def magnify(self, photo_id: uuid.UUID, factor: float) -> Transform:
        """Cumulative magnification since the pinch began."""
        state = self._active(photo_id, Gesture.SCALE)
        state.display = state.baseline.scaled(factor)
        return state.display

    def is_over_delete_target(self, photo_id: uuid.UUID) -> bool:
        if self.delete_target is None:
            return False
        display = self.state(photo_id).display
        return Rect.around(display.x, display.y, PHOTO_HIT_SIZE).intersects(self.delete_target)

    async def end(self, photo_id: uuid.UUID) -> GestureResult | None:
        """Finish the active gesture; returns None when the photo was idle."""
        state = self.state(photo_id)
        gesture = state.gesture
        if gesture is None:
            return None

        if gesture is Gesture.DRAG and self.is_over_delete_target(photo_id):
            return await self._drop_on_delete_target(state)

        final = state.display
        state.gesture = None
        state.baseline = None
        state.committed = final

        try:
            await self.photos.update_photo_transform(
                photo_id,
                position_x=final.x,
                position_y=final.y,
                rotation=final.rotation,
                scale=final.scale,
            )
        except PatchdError as exc:
            logger.warning("Failed to commit transform for photo %s: %s", photo_id, exc)
            return GestureResult(photo_id, gesture, GestureOutcome.COMMIT_FAILED, final, exc)
        return GestureResult(photo_id, gesture, GestureOutcome.COMMITTED, final)

    async def _drop_on_delete_target(self, state: PhotoGestureState) -> GestureResult:
        state.gesture = None
        state.baseline = None
        # Local ownership check is a UX shortcut; the delete call checks again
        if state.owner_id != self.viewer_id:
            state.display = state.committed
            return GestureResult(
                state.photo_id, Gesture.DRAG, GestureOutcome.DELETE_REFUSED, state.committed
            )

        try:
            await self.photos.delete_photo(state.photo_id)
        except PatchdError as exc:
            logger.warning("Failed to delete photo %s: %s", state.photo_id, exc)
            state.display = state.committed
            return GestureResult(
                state.photo_id, Gesture.DRAG, GestureOutcome.DELETE_FAILED, state.committed, exc
            )

        del self._states[state.photo_id]
        return GestureResult(state.photo_id, Gesture.DRAG, GestureOutcome.DELETED, state.display)
