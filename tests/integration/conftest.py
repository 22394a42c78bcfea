"""Fixtures for tests that run the payload in a real Chromium."""

import asyncio
import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from recorder.capture.driver import PlaywrightDriver

PAGES = {
    '/': """
        <html>
        <head><title>Shop</title></head>
        <body>
            <div id="app"><p>Home</p></div>
        </body>
        </html>
    """,
    '/frames': """
        <html>
        <head><title>Checkout</title></head>
        <body>
            <div id="app"><iframe src="/frame"></iframe></div>
        </body>
        </html>
    """,
    '/frame': """
        <html>
        <head><title>Payment</title></head>
        <body><form><input name="card"></form></body>
        </html>
    """,
}


class RecorderPageHandler(BaseHTTPRequestHandler):
    """Serves the test pages and collects events the payload posts."""

    posted: List[Dict[str, Any]] = []

    def do_GET(self):
        path = self.path.split('?')[0]
        html_content = PAGES.get(path)
        if html_content is None:
            self.send_response(404)
            self.end_headers()
            return

        body = html_content.strip().encode('utf-8')
        self.send_response(200)
        self.send_header('Content-type', 'text/html')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self):
        length = int(self.headers.get('Content-Length', 0))
        raw = self.rfile.read(length)
        if self.path.startswith('/api/recorder/events/'):
            self.posted.append(json.loads(raw or b'{}'))

        body = b'{"accepted": 1}'
        self.send_response(200)
        self.send_header('Content-type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Override to suppress log messages."""
        pass


@pytest_asyncio.fixture
async def http_server():
    """Serve the test pages from a real origin; history APIs need one."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        port = s.getsockname()[1]

    RecorderPageHandler.posted = []
    server = HTTPServer(('localhost', port), RecorderPageHandler)
    server_thread = threading.Thread(target=server.serve_forever, daemon=True)
    server_thread.start()
    await asyncio.sleep(0.1)

    yield f"http://localhost:{port}"

    server.shutdown()
    server.server_close()
    server_thread.join(timeout=5.0)


@pytest.fixture
def posted_events(http_server):
    """Events the payload posted to the test server."""
    return RecorderPageHandler.posted


@pytest_asyncio.fixture
async def browser():
    """Create a real browser instance for integration testing."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=True)
    except PlaywrightError as e:
        await playwright.stop()
        pytest.skip(f"Chromium unavailable: {e}")

    yield browser
    await browser.close()
    await playwright.stop()


@pytest_asyncio.fixture
async def page(browser):
    context = await browser.new_context()
    page = await context.new_page()
    yield page
    await context.close()


@pytest.fixture
def driver(page):
    return PlaywrightDriver(page, browser_kind="chromium")
