# tests/test_proxy_connectivity.py
import socket
import threading
import time

import httpx
import pytest
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from webflow_proxy.core.config import Settings
from webflow_proxy.main import create_app
from webflow_proxy.models.schemas import RedirectMode

# --- helpers ---------------------------------------------------------------

class _BgServer:
    """Run a uvicorn server in a background thread; stop with should_exit=True."""
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    def start(self):
        self.thread.start()
        # Wait until port is accepting connections
        deadline = time.time() + 5
        while time.time() < deadline:
            try:
                with socket.create_connection((self.config.host, self.config.port), timeout=0.25):
                    return
            except OSError:
                time.sleep(0.05)
        raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.should_exit = True
        self.thread.join(timeout=3)

# --- mock staging site (the real upstream) ---------------------------------

PAGE = '<html><head></head><body data-wf-domain="site.webflow.io">' + "padding " * 200 + "</body></html>"

def _make_staging_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(GZipMiddleware, minimum_size=100)

    @app.get("/about")
    async def about():
        return HTMLResponse(PAGE)

    @app.post("/echo")
    async def echo(request: Request):
        body = await request.body()
        return JSONResponse(
            {"body": body.decode(), "query": request.url.query, "host": request.headers.get("host")},
            headers={"x-upstream": "staging"},
        )

    return app

# --- tests ----------------------------------------------------------------

@pytest.mark.anyio
async def test_proxy_relays_and_rewrites_real_upstream(free_port):
    staging_port = free_port()
    staging = _BgServer(_make_staging_app(), "127.0.0.1", staging_port)
    staging.start()

    try:
        settings = Settings(
            upstream_url=f"http://127.0.0.1:{staging_port}",
            prod_url="prod.example.com",
            redirect_mode=RedirectMode.WWW,
            request_timeout_s=5.0,
        )
        proxy_port = free_port()
        proxy = _BgServer(create_app(settings), "127.0.0.1", proxy_port)
        proxy.start()

        try:
            base = f"http://127.0.0.1:{proxy_port}"
            async with httpx.AsyncClient(base_url=base, headers={"host": "www.example.com"}) as client:
                # gzip-encoded HTML comes back decoded, rewritten, without content-encoding
                resp = await client.get("/about", headers={"accept-encoding": "gzip"})
                assert resp.status_code == 200
                assert "content-encoding" not in resp.headers
                assert 'data-wf-domain="prod.example.com"' in resp.text
                assert "site.webflow.io" not in resp.text
                assert resp.headers["content-length"] == str(len(resp.content))

                # body, query and custom headers make the round trip
                resp = await client.post("/echo?x=42", content=b"hello")
                assert resp.status_code == 200
                assert resp.json() == {"body": "hello", "query": "x=42", "host": f"127.0.0.1:{staging_port}"}
                assert resp.headers["x-upstream"] == "staging"

            # Negative case: bare host is bounced to www without touching upstream
            async with httpx.AsyncClient(base_url=base, headers={"host": "example.com:8080"}) as client:
                resp = await client.get("/about?ref=1")
                assert resp.status_code == 301
                assert resp.headers["location"] == "https://www.example.com/about?ref=1"

        finally:
            proxy.stop()
    finally:
        staging.stop()
