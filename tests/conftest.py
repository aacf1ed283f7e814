"""Shared fixtures: an in-process fake GenTool server built on aiohttp.web."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from replay_config import ReplayConfig


class FakeGenTool:
    """Serves log and replay files from an in-memory path -> body map."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.redirects: dict[str, str] = {}
        self.requests: list[str] = []
        self.user_agents: list[str] = []
        self.base_url = ""

    def add(self, path: str, body) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.files[path.lstrip("/")] = body

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.path.lstrip("/")
        self.requests.append(path)
        self.user_agents.append(request.headers.get("User-Agent", ""))

        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        if path in self.redirects:
            raise web.HTTPFound("/" + self.redirects[path])
        if path in self.statuses:
            return web.Response(status=self.statuses[path])

        body = self.files.get(path)
        if body is None:
            return web.Response(status=404)
        return web.Response(body=body)


@pytest_asyncio.fixture
async def gentool():
    fake = FakeGenTool()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", fake.handle)

    server = TestServer(app)
    await server.start_server()
    fake.base_url = str(server.make_url("/"))

    yield fake

    await server.close()


@pytest.fixture
def make_config(tmp_path):
    """Build a ReplayConfig pointed at the fake server and a temp output folder."""

    def _make(fake=None, **overrides) -> ReplayConfig:
        params = dict(
            output_folder=str(tmp_path / "replays"),
            show_progress=False,
            create_overview=False,
            create_manifest=False,
        )
        if fake is not None:
            params["base_url"] = fake.base_url
            params["logs_url"] = fake.base_url + "data/zh/logs/"
        params.update(overrides)
        return ReplayConfig(**params)

    return _make
