"""
HTTP API

aiohttp application exposing the device registry:

    GET    /api/devices          device records with live state
    GET    /api/devices/{id}     one device
    POST   /api/devices          validate, persist and register a device
    DELETE /api/devices/{id}     unregister and forget a device
    GET    /api/values           {device_id: {name, tags: {tag: value}}}
    GET    /health               service health

Static web assets are served from ApiSettings.static_dir when it exists.
"""

from pathlib import Path
from typing import Any, Protocol

from aiohttp import web

from gateway.common.config import ApiSettings, Device
from gateway.common.exceptions import NotFoundError, ValidationError
from gateway.common.logging_setup import get_service_logger
from gateway.services.device.registry import DeviceRegistry

logger = get_service_logger("api")


class DeviceController(Protocol):
    """Operations the API delegates to the gateway service"""

    registry: DeviceRegistry

    def add_device(self, record: Any) -> Device: ...

    def remove_device(self, device_id: str) -> Device: ...

    def get_health(self) -> dict: ...


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Translate gateway errors into JSON error responses"""
    try:
        return await handler(request)
    except ValidationError as e:
        return web.json_response(
            {"success": False, "error": "Validation failed", "errors": e.errors},
            status=400,
        )
    except NotFoundError as e:
        return web.json_response({"success": False, "error": e.message}, status=404)


class ApiServer:
    """HTTP query and management interface"""

    def __init__(self, controller: DeviceController, settings: ApiSettings | None = None):
        self._controller = controller
        self.settings = settings or ApiSettings()
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/api/devices", self._list_devices)
        app.router.add_post("/api/devices", self._add_device)
        app.router.add_get("/api/devices/{device_id}", self._get_device)
        app.router.add_delete("/api/devices/{device_id}", self._delete_device)
        app.router.add_get("/api/values", self._values)
        app.router.add_get("/health", self._health)
        self._add_static_routes(app)
        return app

    def _add_static_routes(self, app: web.Application) -> None:
        static_dir = Path(self.settings.static_dir)
        if not static_dir.is_dir():
            logger.debug(f"Static directory {static_dir} not found, web UI disabled")
            return

        async def index(request: web.Request) -> web.StreamResponse:
            index_file = static_dir / "index.html"
            if not index_file.is_file():
                raise web.HTTPNotFound()
            return web.FileResponse(index_file)

        async def add_device_page(request: web.Request) -> web.StreamResponse:
            page = static_dir / "add-device.html"
            if not page.is_file():
                raise web.HTTPNotFound()
            return web.FileResponse(page)

        app.router.add_get("/", index)
        app.router.add_get("/add-device", add_device_page)
        app.router.add_static("/", static_dir)

    async def start(self) -> None:
        """Start listening"""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await site.start()

        logger.info(f"HTTP API started on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP API stopped")

    # ------------------------------------------------------------
    # handlers
    # ------------------------------------------------------------

    async def _list_devices(self, request: web.Request) -> web.Response:
        devices = self._controller.registry.list()
        return web.json_response([d.to_record(include_state=True) for d in devices])

    async def _get_device(self, request: web.Request) -> web.Response:
        device = self._controller.registry.get(request.match_info["device_id"])
        return web.json_response(device.to_record(include_state=True))

    async def _add_device(self, request: web.Request) -> web.Response:
        try:
            record = await request.json()
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise ValidationError(f"Request body is not valid JSON: {e}") from e

        device = self._controller.add_device(record)
        return web.json_response(
            {"success": True, "device": device.to_record(include_state=True)},
            status=201,
        )

    async def _delete_device(self, request: web.Request) -> web.Response:
        self._controller.remove_device(request.match_info["device_id"])
        return web.json_response({"success": True})

    async def _values(self, request: web.Request) -> web.Response:
        return web.json_response(self._controller.registry.snapshot_values())

    async def _health(self, request: web.Request) -> web.Response:
        return web.json_response(self._controller.get_health())
