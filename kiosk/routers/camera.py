# kiosk/routers/camera.py
"""Kiosk webcam controls: start/stop, mirror toggle and a live preview frame."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from kiosk.errors import CameraError
from kiosk.services.camera_service import get_camera, release_camera
from kiosk.utils.images import decode_data_url

router = APIRouter()


@router.post("/camera/start", summary="Open (or restart) the kiosk camera")
def start_camera():
    try:
        camera = get_camera()
        camera.restart()
    except CameraError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"state": camera.state.value, "mirrored": camera.mirrored}


@router.post("/camera/stop", summary="Release the kiosk camera")
def stop_camera():
    release_camera()
    return {"state": "inactive"}


@router.post("/camera/mirror", summary="Toggle mirrored preview")
def toggle_mirror():
    try:
        camera = get_camera()
    except CameraError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"mirrored": camera.toggle_mirror()}


@router.get("/camera/preview.jpg", summary="Current preview frame")
def preview():
    try:
        camera = get_camera()
        jpeg = decode_data_url(camera.encode_jpeg(camera.preview_frame()))
    except CameraError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(content=jpeg, media_type="image/jpeg")
