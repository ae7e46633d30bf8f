# tests/test_wizard.py
"""Unit tests for the registration wizard state machine."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from kiosk.errors import (
    InvalidImageFormat,
    InvalidTransition,
    SessionBusy,
    SessionCancelled,
    StorageError,
    StoreError,
)
from kiosk.services.avatar_service import AvatarStyle
from kiosk.services.badge_compositor import BadgeImages
from kiosk.services.wizard import (
    MSG_COMPOSE,
    MSG_GENERATION,
    MSG_NO_PHOTO,
    MSG_PHOTO_UPLOAD,
    MSG_REGISTER,
    CancelToken,
    CompleteStep,
    PhotoStep,
    PreviewStep,
    PrintingStep,
    RegistrationSession,
    RegistrationStep,
    SessionRegistry,
    visitor_snapshot,
)

AVATAR_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


def fake_images():
    return BadgeImages(
        display_url="data:image/png;base64," + AVATAR_B64,
        print_url="data:image/png;base64," + AVATAR_B64,
        display_size=(720, 1080),
        print_size=(1080, 720),
    )


def make_generator(result=AVATAR_B64):
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=result)
    return generator


def make_compositor(result="default"):
    compositor = MagicMock()
    compositor.compose = AsyncMock(return_value=fake_images() if result == "default" else result)
    return compositor


@pytest.fixture
def visitor(store, visitor_fields):
    return store.create(visitor_fields())


@pytest.fixture
def session(visitor, storage):
    return RegistrationSession(visitor_snapshot(visitor), storage, make_generator(), make_compositor())


async def to_preview(session, png):
    session.confirm_info()
    await session.set_photo(png)
    return await session.generate_preview()


class TestNavigation:
    def test_starts_at_info(self, session):
        assert session.step is RegistrationStep.INFO

    def test_confirm_info_then_back(self, session):
        session.confirm_info()
        assert session.step is RegistrationStep.PHOTO
        session.back()
        assert session.step is RegistrationStep.INFO

    def test_back_from_info_rejected(self, session):
        with pytest.raises(InvalidTransition):
            session.back()

    def test_confirm_info_twice_rejected(self, session):
        session.confirm_info()
        with pytest.raises(InvalidTransition):
            session.confirm_info()

    @pytest.mark.asyncio
    async def test_preview_before_photo_step_rejected(self, session):
        with pytest.raises(InvalidTransition):
            await session.generate_preview()

    @pytest.mark.asyncio
    async def test_confirm_badge_from_photo_rejected(self, session, store):
        session.confirm_info()
        with pytest.raises(InvalidTransition):
            await session.confirm_badge(store)

    @pytest.mark.asyncio
    async def test_back_from_preview_goes_to_photo(self, session, png_data_url):
        await to_preview(session, png_data_url())
        session.back()
        assert isinstance(session.state, PhotoStep)


class TestPhoto:
    @pytest.mark.asyncio
    async def test_set_photo_uploads(self, session, png_data_url):
        session.confirm_info()
        url = await session.set_photo(png_data_url())
        assert url.startswith("http://kiosk.test/storage/photos/REF123456_")
        assert session.error is None

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_local_image(self, visitor, png_data_url):
        storage = MagicMock()
        storage.upload = AsyncMock(side_effect=StorageError("offline"))
        session = RegistrationSession(visitor_snapshot(visitor), storage, make_generator(), make_compositor())
        session.confirm_info()
        image = png_data_url()

        assert await session.set_photo(image) == image
        assert session.error == MSG_PHOTO_UPLOAD
        assert session.step is RegistrationStep.PHOTO

    @pytest.mark.asyncio
    async def test_invalid_image_raises(self, session):
        session.confirm_info()
        with pytest.raises(InvalidImageFormat):
            await session.set_photo("garbage")

    @pytest.mark.asyncio
    async def test_capture_photo_from_camera(self, session):
        camera = MagicMock()
        camera.capture_photo = AsyncMock(return_value=MagicMock(url="http://x/p.jpg", uploaded=True))
        session.confirm_info()
        assert await session.capture_photo(camera) == "http://x/p.jpg"
        camera.capture_photo.assert_awaited_once_with("REF123456", session.storage)


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_generates_and_composites(self, session, png_data_url):
        state = await to_preview(session, png_data_url())
        assert isinstance(state, PreviewStep)
        assert state.style is AvatarStyle.PHOTO_SHOOT
        assert state.avatar == "data:image/png;base64," + AVATAR_B64
        session.compositor.compose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_style_falls_back(self, session, png_data_url):
        session.confirm_info()
        await session.set_photo(png_data_url())
        state = await session.generate_preview("sepia")
        assert state.style is AvatarStyle.GLAM_80S

    @pytest.mark.asyncio
    async def test_no_photo(self, session):
        session.confirm_info()
        await session.generate_preview()
        assert session.error == MSG_NO_PHOTO
        assert session.step is RegistrationStep.PHOTO

    @pytest.mark.asyncio
    async def test_generation_failure_stays_on_photo(self, visitor, storage, png_data_url):
        compositor = make_compositor()
        session = RegistrationSession(visitor_snapshot(visitor), storage, make_generator(None), compositor)
        await to_preview(session, png_data_url())
        assert session.step is RegistrationStep.PHOTO
        assert session.error == MSG_GENERATION
        compositor.compose.assert_not_called()

    @pytest.mark.asyncio
    async def test_compose_failure_stays_on_photo(self, visitor, storage, png_data_url):
        session = RegistrationSession(visitor_snapshot(visitor), storage, make_generator(), make_compositor(None))
        await to_preview(session, png_data_url())
        assert session.step is RegistrationStep.PHOTO
        assert session.error == MSG_COMPOSE


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_persists_every_url(self, session, store, png_data_url):
        await to_preview(session, png_data_url())
        state = await session.confirm_badge(store)

        assert isinstance(state, PrintingStep)
        saved = store.get_by_ref("REF123456")
        assert saved.registered is True
        assert saved.photo_url.startswith("http://kiosk.test/storage/photos/")
        assert "/badges/REF123456_" in saved.badge_url
        assert "/badges/REF123456-card_" in saved.card_url
        assert "/badges/REF123456-print_" in saved.print_url
        assert state.print_image == saved.print_url

    @pytest.mark.asyncio
    async def test_store_failure_stays_on_preview(self, session, png_data_url):
        store = MagicMock()
        store.update_registration.side_effect = StoreError("db down")
        await to_preview(session, png_data_url())

        await session.confirm_badge(store)

        assert session.step is RegistrationStep.PREVIEW
        assert session.error == MSG_REGISTER

    @pytest.mark.asyncio
    async def test_finish_printing_reports_ticks(self, session, store, png_data_url):
        await to_preview(session, png_data_url())
        await session.confirm_badge(store)
        ticks = []

        state = await session.finish_printing(on_progress=ticks.append, duration=0)

        assert ticks == [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
        assert isinstance(state, CompleteStep)
        assert session.to_dict()["progress"] == 100


class TestReentry:
    @pytest.mark.asyncio
    async def test_registered_visitor_reuses_badge(self, store, visitor, storage):
        registered = store.update_registration("REF123456", "http://x/photo.jpg", badge_url="http://x/badge.png")
        generator = make_generator()
        compositor = make_compositor()
        session = RegistrationSession(visitor_snapshot(registered), storage, generator, compositor)

        session.confirm_info()
        state = await session.generate_preview()

        assert state.avatar == "http://x/badge.png"
        generator.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_photo_regenerates(self, store, visitor, storage, png_data_url):
        registered = store.update_registration("REF123456", "http://x/photo.jpg", badge_url="http://x/badge.png")
        generator = make_generator()
        session = RegistrationSession(visitor_snapshot(registered), storage, generator, make_compositor())

        session.confirm_info()
        await session.set_photo(png_data_url())
        await session.generate_preview()

        generator.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_different_style_regenerates(self, store, visitor, storage):
        registered = store.update_registration("REF123456", "http://x/photo.jpg", badge_url="http://x/badge.png")
        generator = make_generator()
        session = RegistrationSession(visitor_snapshot(registered), storage, generator, make_compositor())

        session.confirm_info()
        await session.generate_preview("anime")

        generator.generate.assert_awaited_once_with("http://x/photo.jpg", "Ada", AvatarStyle.ANIME)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_aborts_inflight_generation(self, visitor, storage, png_data_url):
        started = asyncio.Event()

        async def slow_generate(*args, **kwargs):
            started.set()
            await asyncio.sleep(60)
            return AVATAR_B64

        generator = MagicMock()
        generator.generate = slow_generate
        compositor = make_compositor()
        session = RegistrationSession(visitor_snapshot(visitor), storage, generator, compositor)
        session.confirm_info()
        await session.set_photo(png_data_url())

        task = asyncio.ensure_future(session.generate_preview())
        await started.wait()
        session.cancel()

        with pytest.raises(SessionCancelled):
            await task
        assert session.step is RegistrationStep.PHOTO
        compositor.compose.assert_not_called()

    @pytest.mark.asyncio
    async def test_guard_after_cancel_never_runs(self):
        token = CancelToken()
        token.cancel()
        ran = []

        async def work():
            ran.append(True)

        with pytest.raises(SessionCancelled):
            await token.guard(work())
        assert ran == []

    def test_registry_remove_cancels(self, session):
        registry = SessionRegistry()
        registry.add(session)
        assert len(registry) == 1
        assert registry.remove(session.id) is session
        assert session.token.cancelled
        with pytest.raises(KeyError):
            registry.get(session.id)

    def test_registry_discard_does_not_cancel(self, session):
        registry = SessionRegistry()
        registry.add(session)
        assert registry.discard(session.id) is session
        assert not session.token.cancelled
        assert len(registry) == 0


def blocking_generator():
    started, release = asyncio.Event(), asyncio.Event()

    async def generate(*args, **kwargs):
        started.set()
        await release.wait()
        return AVATAR_B64

    generator = MagicMock()
    generator.generate = generate
    return generator, started, release


class TestOverlappingActions:
    @pytest.mark.asyncio
    async def test_back_during_preview_is_busy(self, visitor, storage, png_data_url):
        generator, started, release = blocking_generator()
        session = RegistrationSession(visitor_snapshot(visitor), storage, generator, make_compositor())
        session.confirm_info()
        await session.set_photo(png_data_url())

        task = asyncio.ensure_future(session.generate_preview())
        await started.wait()
        assert session.busy
        with pytest.raises(SessionBusy):
            session.back()
        assert session.step is RegistrationStep.PHOTO

        release.set()
        state = await task
        assert isinstance(state, PreviewStep)
        assert not session.busy
        session.back()
        assert session.step is RegistrationStep.PHOTO

    @pytest.mark.asyncio
    async def test_double_confirm_persists_once(self, session, store, png_data_url):
        await to_preview(session, png_data_url())
        started, release = asyncio.Event(), asyncio.Event()
        upload = session.storage.upload

        async def slow_upload(image, ref, bucket, variant=None):
            if bucket == "badges":
                started.set()
                await release.wait()
            return await upload(image, ref, bucket, variant)

        session.storage.upload = slow_upload
        store.update_registration = MagicMock(wraps=store.update_registration)

        first = asyncio.ensure_future(session.confirm_badge(store))
        await started.wait()
        with pytest.raises(SessionBusy):
            await session.confirm_badge(store)

        release.set()
        assert isinstance(await first, PrintingStep)
        store.update_registration.assert_called_once()

    @pytest.mark.asyncio
    async def test_busy_clears_after_failure(self, visitor, storage, png_data_url):
        generator = MagicMock()
        generator.generate = AsyncMock(side_effect=RuntimeError("boom"))
        session = RegistrationSession(visitor_snapshot(visitor), storage, generator, make_compositor())
        session.confirm_info()
        await session.set_photo(png_data_url())

        with pytest.raises(RuntimeError):
            await session.generate_preview()

        assert not session.busy
        session.back()
        assert session.step is RegistrationStep.INFO


class TestIdleExpiry:
    def test_idle_session_expired_on_add(self, visitor, session):
        registry = SessionRegistry(idle_timeout=timedelta(minutes=5))
        registry.add(session)
        session.last_active = datetime.utcnow() - timedelta(minutes=10)

        fresh = RegistrationSession(visitor_snapshot(visitor), session.storage, make_generator(), make_compositor())
        registry.add(fresh)

        assert len(registry) == 1
        assert registry.get(fresh.id) is fresh
        assert session.token.cancelled
        with pytest.raises(KeyError):
            registry.get(session.id)

    def test_recent_session_kept(self, session):
        registry = SessionRegistry(idle_timeout=timedelta(minutes=5))
        registry.add(session)
        assert registry.expire_idle() == 0
        assert registry.get(session.id) is session

    def test_actions_refresh_activity(self, session):
        registry = SessionRegistry(idle_timeout=timedelta(minutes=5))
        registry.add(session)
        session.last_active = datetime.utcnow() - timedelta(minutes=10)
        session.confirm_info()
        assert registry.expire_idle() == 0

    @pytest.mark.asyncio
    async def test_running_session_not_expired(self, visitor, storage, png_data_url):
        generator, started, release = blocking_generator()
        session = RegistrationSession(visitor_snapshot(visitor), storage, generator, make_compositor())
        registry = SessionRegistry(idle_timeout=timedelta(minutes=5))
        registry.add(session)
        session.confirm_info()
        await session.set_photo(png_data_url())

        task = asyncio.ensure_future(session.generate_preview())
        await started.wait()
        assert registry.expire_idle(now=datetime.utcnow() + timedelta(hours=1)) == 0
        release.set()
        await task
        assert registry.get(session.id) is session
