import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from camhls.streaming import BackendCameraRegistry, CameraConfig, StaticCameraRegistry


def test_camera_from_registry_record():
    camera = CameraConfig.from_dict({
        "id": " cam1 ",
        "name": "Porch",
        "enabled": True,
        "rtsp": {"url": " rtsp://10.0.0.11/live "},
    })

    assert camera == CameraConfig(id="cam1", name="Porch", rtsp_url="rtsp://10.0.0.11/live")
    assert camera.has_stream_config


def test_camera_without_rtsp():
    camera = CameraConfig.from_dict({"id": 7, "enabled": False})

    assert camera.id == "7"
    assert camera.name == "7"
    assert camera.enabled is False
    assert not camera.has_stream_config


@pytest.mark.parametrize("payload", [
    [{"id": "cam1", "name": "Porch", "rtsp": {"url": "rtsp://10.0.0.11/live"}}],
    {"cameras": [{"id": "cam1", "name": "Porch", "rtsp": {"url": "rtsp://10.0.0.11/live"}}]},
])
async def test_static_registry_from_file(tmp_path, payload):
    path = tmp_path / "cameras.json"
    path.write_text(json.dumps(payload))

    registry = StaticCameraRegistry.from_file(path)

    camera = await registry.get_camera("cam1")
    assert camera.rtsp_url == "rtsp://10.0.0.11/live"
    assert await registry.get_camera("cam2") is None


async def test_static_registry_add_remove():
    registry = StaticCameraRegistry()
    registry.add(CameraConfig(id="cam1", name="Porch"))

    assert list(registry.cameras) == ["cam1"]
    assert registry.remove("cam1") is True
    assert registry.remove("cam1") is False
    assert await registry.get_camera("cam1") is None


@pytest.fixture
async def backend():
    seen_auth = []

    async def get_camera(request: web.Request) -> web.Response:
        seen_auth.append(request.headers.get("Authorization"))
        camera_id = request.match_info["camera_id"]
        if camera_id == "cam1":
            return web.json_response({
                "camera": {"id": "cam1", "name": "Porch", "rtsp": {"url": "rtsp://10.0.0.11/live"}},
            })
        if camera_id == "broken":
            return web.Response(status=500, text="boom")
        return web.json_response({"error": "not found"}, status=404)

    app = web.Application()
    app.router.add_get("/api/cameras/{camera_id}", get_camera)
    server = test_utils.TestServer(app)
    await server.start_server()
    server.seen_auth = seen_auth
    yield server
    await server.close()


async def test_backend_registry_fetches_camera(backend):
    registry = BackendCameraRegistry(str(backend.make_url("/")), token="secret")

    camera = await registry.get_camera("cam1")

    assert camera == CameraConfig(id="cam1", name="Porch", rtsp_url="rtsp://10.0.0.11/live")
    assert backend.seen_auth == ["Bearer secret"]


@pytest.mark.parametrize("camera_id", ["unknown", "broken"])
async def test_backend_registry_missing_camera(backend, camera_id):
    registry = BackendCameraRegistry(str(backend.make_url("/")))

    assert await registry.get_camera(camera_id) is None
    assert backend.seen_auth == [None]


async def test_backend_registry_unreachable():
    registry = BackendCameraRegistry("http://127.0.0.1:1", timeout=1.0)

    assert await registry.get_camera("cam1") is None
