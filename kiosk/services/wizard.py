# kiosk/services/wizard.py
"""
Registration wizard: the kiosk's five-step flow as an explicit state machine.

    info → photo → preview → printing → complete

Strictly forward, with `back` allowed from photo and preview to the step
right before. Each step is its own dataclass carrying that step's payload,
and every action checks the step type before doing anything; an action
from the wrong step raises InvalidTransition. One action runs at a time per
session; a call that overlaps a running action raises SessionBusy.

Every awaited call goes through the session's CancelToken. After cancel(),
in-flight calls are aborted and their continuations raise SessionCancelled
instead of writing into a session nobody is looking at any more.
"""

import asyncio
import functools
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Union

from kiosk.config import settings
from kiosk.errors import InvalidImageFormat, InvalidTransition, KioskError, SessionBusy, SessionCancelled
from kiosk.services.avatar_service import AvatarStyle
from kiosk.services.badge_compositor import BadgeImages
from kiosk.utils.images import is_remote_url
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

PRINT_TICKS = 10

MSG_PHOTO_UPLOAD = "Failed to upload photo. Please try again."
MSG_NO_PHOTO = "Please take a photo before continuing."
MSG_GENERATION = "Failed to generate badge preview. Please try again."
MSG_COMPOSE = "Failed to create badge. Please try again."
MSG_REGISTER = "Failed to register. Please try again."


class RegistrationStep(str, Enum):
    INFO = "info"
    PHOTO = "photo"
    PREVIEW = "preview"
    PRINTING = "printing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class InfoStep:
    step = RegistrationStep.INFO


@dataclass(frozen=True)
class PhotoStep:
    step = RegistrationStep.PHOTO


@dataclass(frozen=True)
class PreviewStep:
    avatar: str                 # badge_url: generated avatar (or stored URL)
    images: BadgeImages         # composited card + rotated print raster
    style: AvatarStyle
    step = RegistrationStep.PREVIEW


@dataclass(frozen=True)
class PrintingStep:
    print_image: str
    progress: int = 0
    step = RegistrationStep.PRINTING


@dataclass(frozen=True)
class CompleteStep:
    print_image: str
    step = RegistrationStep.COMPLETE


WizardState = Union[InfoStep, PhotoStep, PreviewStep, PrintingStep, CompleteStep]


class CancelToken:
    """Abort signal shared by every awaited call of one session."""

    def __init__(self):
        self.cancelled = False
        self._tasks = set()

    def cancel(self):
        self.cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise SessionCancelled("Registration session was cancelled")

    async def guard(self, awaitable):
        """Await `awaitable` as a task that cancel() aborts."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self.cancelled:
                raise SessionCancelled("Registration session was cancelled")
            raise
        finally:
            self._tasks.discard(task)
        self.raise_if_cancelled()
        return result


def visitor_snapshot(visitor) -> dict:
    """Plain copy of the visitor row, detached from any DB session."""
    return {
        key: getattr(visitor, key)
        for key in ("id", "ref", "name", "last_name", "company", "position", "email", "phone",
                    "event_id", "registered", "photo_url", "qr_url", "badge_url", "card_url",
                    "print_url")
    }


def exclusive(action: str):
    """
    Runs a session method as the session's only action. A call made while
    another action is still awaiting raises SessionBusy, so a step can
    never be changed underneath an in-flight preview or confirm.
    """
    def decorate(method):
        if asyncio.iscoroutinefunction(method):
            @functools.wraps(method)
            async def run_async(self, *args, **kwargs):
                with self._claim(action):
                    return await method(self, *args, **kwargs)
            return run_async

        @functools.wraps(method)
        def run(self, *args, **kwargs):
            with self._claim(action):
                return method(self, *args, **kwargs)
        return run
    return decorate


class RegistrationSession:
    def __init__(self, visitor: dict, storage, avatar_generator, compositor,
                 default_style: AvatarStyle = AvatarStyle.PHOTO_SHOOT):
        self.id = str(uuid.uuid4())
        self.visitor = visitor
        self.storage = storage
        self.avatar_generator = avatar_generator
        self.compositor = compositor
        self.default_style = default_style
        self.token = CancelToken()
        self.started_at = datetime.utcnow()
        self.last_active = self.started_at
        self._busy: Optional[str] = None

        self.state: WizardState = InfoStep()
        self.error: Optional[str] = None

        # Re-entrant visitors start at info with their stored assets shown
        self.photo_url: Optional[str] = visitor.get("photo_url")
        self.photo_changed = False

    @property
    def ref(self) -> str:
        return self.visitor["ref"]

    @property
    def step(self) -> RegistrationStep:
        return self.state.step

    @property
    def busy(self) -> bool:
        return self._busy is not None

    def _require(self, *allowed, action: str):
        if not isinstance(self.state, allowed):
            raise InvalidTransition(f"Cannot {action} from step '{self.step.value}'")

    @contextmanager
    def _claim(self, action: str):
        if self._busy:
            raise SessionBusy(f"Cannot {action} while '{self._busy}' is in progress")
        self._busy = action
        self.last_active = datetime.utcnow()
        try:
            yield
        finally:
            self._busy = None
            self.last_active = datetime.utcnow()

    def _move(self, state: WizardState):
        logger.info(f"[WIZARD] {self.ref}: {self.step.value} → {state.step.value}")
        self.state = state

    # ── Navigation ────────────────────────────────────────────────────────
    @exclusive("confirm info")
    def confirm_info(self) -> WizardState:
        self._require(InfoStep, action="confirm info")
        self.error = None
        self._move(PhotoStep())
        return self.state

    @exclusive("go back")
    def back(self) -> WizardState:
        self._require(PhotoStep, PreviewStep, action="go back")
        self.error = None
        self._move(InfoStep() if isinstance(self.state, PhotoStep) else PhotoStep())
        return self.state

    def cancel(self):
        self.token.cancel()
        logger.info(f"[WIZARD] {self.ref}: session cancelled at {self.step.value}")

    # ── Photo ─────────────────────────────────────────────────────────────
    @exclusive("set photo")
    async def set_photo(self, image: str) -> str:
        """
        Store a photo taken by the kiosk browser (data URL or hosted URL).
        Upload failure keeps the local image so the flow is not blocked.
        """
        self._require(PhotoStep, action="set photo")
        self.error = None
        try:
            url = await self.token.guard(self.storage.upload(image, self.ref, "photos"))
        except (SessionCancelled, InvalidImageFormat):
            raise
        except KioskError as e:
            logger.warning(f"[WIZARD] {self.ref}: photo upload failed, using local image: {e}")
            self.error = MSG_PHOTO_UPLOAD
            url = image
        self.photo_url = url
        self.photo_changed = True
        return url

    @exclusive("capture photo")
    async def capture_photo(self, camera) -> str:
        """Snap a photo with the kiosk webcam (CameraCapture)."""
        self._require(PhotoStep, action="capture photo")
        self.error = None
        captured = await self.token.guard(camera.capture_photo(self.ref, self.storage))
        if not captured.uploaded:
            self.error = MSG_PHOTO_UPLOAD
        self.photo_url = captured.url
        self.photo_changed = True
        return captured.url

    # ── Preview ───────────────────────────────────────────────────────────
    def _can_reuse_badge(self, style: AvatarStyle) -> bool:
        v = self.visitor
        return bool(
            v.get("registered") and v.get("badge_url") and v.get("photo_url")
            and self.photo_url == v["photo_url"]
            and not self.photo_changed
            and style == self.default_style
        )

    @exclusive("generate preview")
    async def generate_preview(self, style=None) -> WizardState:
        """
        photo → preview. Generates the avatar (or reuses the stored one for a
        returning visitor with an unchanged photo and style) and composites
        the badge. Any failure keeps the wizard on photo with an inline error.
        """
        self._require(PhotoStep, action="generate preview")
        self.error = None
        if not self.photo_url:
            self.error = MSG_NO_PHOTO
            return self.state

        avatar_style = AvatarStyle.parse(style) if style else self.default_style
        if self._can_reuse_badge(avatar_style):
            logger.info(f"[WIZARD] {self.ref}: reusing stored badge {self.visitor['badge_url']}")
            avatar = self.visitor["badge_url"]
        else:
            b64 = await self.token.guard(
                self.avatar_generator.generate(self.photo_url, self.visitor.get("name") or "", avatar_style)
            )
            if not b64:
                self.error = MSG_GENERATION
                return self.state
            avatar = f"data:image/png;base64,{b64}"

        images = await self.token.guard(self.compositor.compose(avatar, self.visitor))
        if images is None:
            self.error = MSG_COMPOSE
            return self.state

        self._move(PreviewStep(avatar=avatar, images=images, style=avatar_style))
        return self.state

    # ── Register + print ──────────────────────────────────────────────────
    async def _upload_optional(self, image: str, bucket: str, variant: Optional[str] = None) -> Optional[str]:
        try:
            return await self.token.guard(self.storage.upload(image, self.ref, bucket, variant))
        except SessionCancelled:
            raise
        except KioskError as e:
            logger.warning(f"[WIZARD] {self.ref}: {bucket}/{variant or 'badge'} upload failed: {e}")
            return None

    @exclusive("confirm badge")
    async def confirm_badge(self, store) -> WizardState:
        """
        preview → printing. Uploads the badge assets and persists every URL on
        the visitor record. If persisting fails the wizard stays on preview;
        assets already uploaded are not removed.
        """
        self._require(PreviewStep, action="confirm badge")
        self.error = None
        preview: PreviewStep = self.state

        photo_url = self.photo_url
        if photo_url and not is_remote_url(photo_url):
            photo_url = await self._upload_optional(photo_url, "photos") or photo_url

        badge_url = await self._upload_optional(preview.avatar, "badges")
        card_url = await self._upload_optional(preview.images.display_url, "badges", "card")
        print_url = await self._upload_optional(preview.images.print_url, "badges", "print")

        self.token.raise_if_cancelled()
        try:
            visitor = store.update_registration(self.ref, photo_url, badge_url=badge_url,
                                                card_url=card_url, print_url=print_url)
        except KioskError as e:
            logger.error(f"[WIZARD] {self.ref}: registration update failed: {e}")
            self.error = MSG_REGISTER
            return self.state

        self.visitor = visitor_snapshot(visitor)
        self.photo_url = photo_url
        self.photo_changed = False
        self._move(PrintingStep(print_image=print_url or preview.images.print_url))
        return self.state

    @exclusive("finish printing")
    async def finish_printing(self, on_progress: Optional[Callable[[int], None]] = None,
                              duration: Optional[float] = None) -> WizardState:
        """
        printing → complete after a fixed animation delay. There is no printer
        feedback; progress is purely a UI affordance.
        """
        self._require(PrintingStep, action="finish printing")
        total = settings.PRINT_ANIMATION_SECONDS if duration is None else duration
        printing: PrintingStep = self.state
        progress = printing.progress
        while progress < 100:
            await self.token.guard(asyncio.sleep(total / PRINT_TICKS))
            progress = min(progress + 100 // PRINT_TICKS, 100)
            self.state = PrintingStep(print_image=printing.print_image, progress=progress)
            if on_progress:
                on_progress(progress)
        self._move(CompleteStep(print_image=printing.print_image))
        return self.state

    # ── View ──────────────────────────────────────────────────────────────
    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "ref": self.ref,
            "step": self.step.value,
            "error": self.error,
            "photoUrl": self.photo_url,
            "badgeUrl": self.visitor.get("badge_url"),
            "visitor": self.visitor,
            "cancelled": self.token.cancelled,
        }
        if isinstance(self.state, PreviewStep):
            data.update(
                badgePreview=self.state.avatar,
                cardUrl=self.state.images.display_url,
                printUrl=self.state.images.print_url,
                style=self.state.style.value,
            )
        elif isinstance(self.state, (PrintingStep, CompleteStep)):
            data.update(
                printUrl=self.state.print_image,
                progress=self.state.progress if isinstance(self.state, PrintingStep) else 100,
            )
        return data


class SessionRegistry:
    """
    In-process registry of live wizard sessions, one per kiosk tab.
    Sessions leave it when cancelled, when they reach `complete`, or once
    they have been idle longer than SESSION_IDLE_MINUTES (checked on add).
    """

    def __init__(self, idle_timeout: Optional[timedelta] = None):
        self.idle_timeout = idle_timeout or timedelta(minutes=settings.SESSION_IDLE_MINUTES)
        self._sessions = {}

    def add(self, session: RegistrationSession) -> RegistrationSession:
        self.expire_idle()
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> RegistrationSession:
        return self._sessions[session_id]

    def remove(self, session_id: str) -> Optional[RegistrationSession]:
        """Cancel and drop a session."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.cancel()
        return session

    def discard(self, session_id: str) -> Optional[RegistrationSession]:
        """Drop a finished session; nothing is left to cancel."""
        return self._sessions.pop(session_id, None)

    def expire_idle(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        stale = [
            sid for sid, session in self._sessions.items()
            if not session.busy and now - session.last_active > self.idle_timeout
        ]
        for sid in stale:
            self.remove(sid)
        if stale:
            logger.info(f"[WIZARD] Expired {len(stale)} idle session(s)")
        return len(stale)

    def __len__(self):
        return len(self._sessions)


_registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    """FastAPI dependency: the process-wide session registry."""
    return _registry
