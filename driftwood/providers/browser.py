"""
Headless-browser capture, the slow path.

Only used after an adapter's static decode fails validation: open the
adapter's player page in Chromium and watch the network for the first
manifest request the player makes.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

from ..errors import DecodeSchemeChanged
from .base import StreamSource
from .fetcher import DEFAULT_UA

log = logging.getLogger("driftwood.providers.browser")

PLAY_SELECTORS = "#play-button, .play-button, button.play, .jw-icon-playback"


class BrowserCapture:
    def __init__(self, *, timeout: float = 15, poll_interval: float = 0.5):
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def capture(self, url: str) -> StreamSource:
        from playwright.async_api import async_playwright

        found: Optional[str] = None

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context(user_agent=DEFAULT_UA)
                page = await context.new_page()

                def handle_request(request):
                    nonlocal found
                    if found is None and ".m3u8" in request.url:
                        found = request.url

                page.on("request", handle_request)

                log.info("Browser capture: %s", url)
                await page.goto(url, timeout=int(self.timeout * 1000))

                clicked = False
                for _ in range(int(self.timeout / self.poll_interval)):
                    if found:
                        break
                    await asyncio.sleep(self.poll_interval)
                    if not clicked and not found:
                        play_button = await page.query_selector(PLAY_SELECTORS)
                        if play_button:
                            await play_button.click()
                            clicked = True
            finally:
                await browser.close()

        if not found:
            raise DecodeSchemeChanged("browser capture saw no manifest request")
        return StreamSource(url=found, quality="auto", stream_type="hls", referer=url,
                            title="browser capture")
