"""Shared fixtures: an in-process fake ComfyUI server and a client bound to it."""
import asyncio
from dataclasses import dataclass
from typing import Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from comfyui_client import ComfyUIClient, Subscription

PNG_BYTES = b"\x89PNG\r\n\x1a\n fake image data"

KSAMPLER_INFO = {
    "name": "KSampler",
    "display_name": "KSampler",
    "description": "",
    "category": "sampling",
    "input": {"required": {"seed": ["INT", {"default": 0}]}},
    "output": ["LATENT"],
    "output_is_list": [False],
    "output_name": ["LATENT"],
    "output_node": False,
}


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: dict
    authorization: Optional[str]


class FakeComfyServer:
    """Minimal stand-in for the ComfyUI HTTP and WebSocket API."""

    def __init__(self):
        self.address = ""
        self.prompt_id = "abc"
        self.history: dict = {}
        self.files: dict[str, bytes] = {}
        self.requests: list[RecordedRequest] = []
        self.ws_requests: list[RecordedRequest] = []
        self.prompts: list[dict] = []
        self.history_edits: list[dict] = []
        self.uploads: list[dict] = []
        self.sockets: list[web.WebSocketResponse] = []
        # path -> plain text answered with HTTP 500
        self.failing: set[str] = set()
        # answer every HTTP request with 500
        self.failing_all = False
        # path -> answered with HTTP 200 and an "error" field
        self.erroring: set[str] = set()
        # path -> raw text answered with HTTP 200
        self.raw: dict[str, str] = {}
        # announce completion over the socket before answering POST /prompt
        self.complete_before_reply = False
        self.app = self._build_app()

    def _build_app(self) -> web.Application:
        @web.middleware
        async def record(request, handler):
            entry = RecordedRequest(
                request.method,
                request.path,
                dict(request.query),
                request.headers.get("Authorization"),
            )
            if request.path == "/ws":
                self.ws_requests.append(entry)
                return await handler(request)
            self.requests.append(entry)
            if self.failing_all or request.path in self.failing:
                return web.Response(status=500, text="Internal Server Error")
            if request.path in self.erroring:
                return web.json_response({"error": {"type": "invalid_prompt", "message": "bad"}})
            if request.path in self.raw:
                return web.Response(text=self.raw[request.path])
            return await handler(request)

        app = web.Application(middlewares=[record])
        app.router.add_get("/ws", self.websocket)
        app.router.add_get("/embeddings", self.embeddings)
        app.router.add_get("/extensions", self.extensions)
        app.router.add_post("/prompt", self.post_prompt)
        app.router.add_get("/prompt", self.get_prompt)
        app.router.add_post("/interrupt", self.interrupt)
        app.router.add_get("/history", self.get_history)
        app.router.add_get("/history/{prompt_id}", self.get_history)
        app.router.add_post("/history", self.post_history)
        app.router.add_post("/upload/image", self.upload)
        app.router.add_post("/upload/mask", self.upload)
        app.router.add_get("/view", self.view)
        app.router.add_get("/view_metadata/{folder_name}", self.view_metadata)
        app.router.add_get("/system_stats", self.system_stats)
        app.router.add_get("/object_info", self.object_info)
        app.router.add_get("/object_info/{node_class}", self.object_info)
        app.router.add_get("/queue", self.queue)
        return app

    async def push(self, event: dict):
        for ws in list(self.sockets):
            await ws.send_json(event)

    async def push_raw(self, data):
        for ws in list(self.sockets):
            if isinstance(data, bytes):
                await ws.send_bytes(data)
            else:
                await ws.send_str(data)

    async def websocket(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        try:
            async for _ in ws:
                pass
        finally:
            self.sockets.remove(ws)
        return ws

    async def embeddings(self, request):
        return web.json_response(["easynegative", "badhandv4"])

    async def extensions(self, request):
        return web.json_response(["/extensions/core/colorPalette.js"])

    async def post_prompt(self, request):
        body = await request.json()
        self.prompts.append(body)
        if self.complete_before_reply:
            await self.push({"type": "executing", "data": {"node": None, "prompt_id": self.prompt_id}})
            await asyncio.sleep(0.05)
        return web.json_response(
            {"prompt_id": self.prompt_id, "number": len(self.prompts), "node_errors": {}}
        )

    async def get_prompt(self, request):
        return web.json_response({"exec_info": {"queue_remaining": 2}})

    async def interrupt(self, request):
        return web.Response()

    async def get_history(self, request):
        prompt_id = request.match_info.get("prompt_id")
        if prompt_id is None:
            return web.json_response(self.history)
        if prompt_id in self.history:
            return web.json_response({prompt_id: self.history[prompt_id]})
        return web.json_response({})

    async def post_history(self, request):
        self.history_edits.append(await request.json())
        return web.Response()

    async def upload(self, request):
        post = await request.post()
        image = post["image"]
        self.uploads.append({
            "path": request.path,
            "filename": image.filename,
            "data": image.file.read(),
            "overwrite": post.get("overwrite"),
            "original_ref": post.get("original_ref"),
        })
        return web.json_response({"name": image.filename, "subfolder": "", "type": "input"})

    async def view(self, request):
        filename = request.query.get("filename", "")
        if filename not in self.files:
            return web.Response(status=404)
        return web.Response(body=self.files[filename], content_type="image/png")

    async def view_metadata(self, request):
        if "filename" not in request.query:
            return web.Response(status=404)
        return web.json_response({"modelspec.title": request.query["filename"]})

    async def system_stats(self, request):
        return web.json_response({
            "system": {"os": "posix", "python_version": "3.11.6"},
            "devices": [{
                "name": "cuda:0 NVIDIA GeForce RTX 4090",
                "type": "cuda",
                "index": 0,
                "vram_total": 25393692672,
                "vram_free": 23871029248,
                "torch_vram_total": 0,
                "torch_vram_free": 0,
            }],
        })

    async def object_info(self, request):
        node_class = request.match_info.get("node_class")
        if node_class is None:
            return web.json_response({"KSampler": KSAMPLER_INFO})
        if node_class == "KSampler":
            return web.json_response({"KSampler": KSAMPLER_INFO})
        return web.json_response({})

    async def queue(self, request):
        return web.json_response({"queue_running": [], "queue_pending": []})


@pytest_asyncio.fixture
async def comfy_server():
    fake = FakeComfyServer()
    server = TestServer(fake.app)
    await server.start_server()
    fake.address = f"{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client(comfy_server):
    client = ComfyUIClient(comfy_server.address, "test-client")
    yield client
    await client.close()


@pytest.fixture
def wait_subscribed():
    """Wait until the client listens for a completion (or the job task fails)."""

    async def wait(client: ComfyUIClient, task: asyncio.Task, count: int = 1):
        for _ in range(500):
            if task.done():
                task.result()
                raise AssertionError("job finished before subscribing")
            subscribed = [s for s in client.connection.subscriptions if isinstance(s, Subscription)]
            if len(subscribed) >= count:
                return
            await asyncio.sleep(0.01)
        raise AssertionError("no subscription registered")

    return wait
