"""
Playwright implementation of the render host.

One headless Chromium page serves as the live document. Each staged
surface is an absolutely positioned container placed to the right of
the visible viewport: it is laid out and styled normally (never
``display: none``), but nothing about it is visible in the viewport.
Markup and style rules are mounted inside an open shadow root so the
injected rules apply to the surface only.

Concurrent surfaces on the same page occupy distinct horizontal slots so
their captures never overlap.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Sequence

from playwright.async_api import ElementHandle, Page, async_playwright

from publisher.app.rendering.host import PageSize, RasterAsset, StagingSurface

logger = logging.getLogger("publisher.rendering.playwright")

HOST_DOCUMENT = (
    "<!DOCTYPE html>"
    '<html><head><meta charset="utf-8"><title>render-host</title></head>'
    '<body style="margin:0;padding:0;background:#FFFFFF"></body></html>'
)

SLOT_GUTTER_PX = 64

_ATTACH_JS = """
({ id, markup, css, width, height, left }) => {
  const container = document.createElement('div');
  container.id = id;
  container.setAttribute('data-staging-surface', '');
  Object.assign(container.style, {
    position: 'absolute',
    top: '0px',
    left: left + 'px',
    width: width + 'px',
    minHeight: height + 'px',
    margin: '0',
    padding: '0',
    backgroundColor: '#FFFFFF',
    overflow: 'visible',
  });
  const root = container.attachShadow({ mode: 'open' });
  root.innerHTML = '<style>' + css + '</style>' + markup;
  document.body.appendChild(container);
}
"""

_SETTLE_JS = """
async () => {
  await new Promise((resolve) =>
    requestAnimationFrame(() => requestAnimationFrame(resolve))
  );
  if (document.fonts && document.fonts.ready) {
    await document.fonts.ready;
  }
}
"""

_DETACH_JS = """
(id) => {
  const el = document.getElementById(id);
  if (el) el.remove();
}
"""

_IS_ATTACHED_JS = "(id) => document.getElementById(id) !== null"

_IMAGES_JS = (
    "(el) => el.shadowRoot ? Array.from(el.shadowRoot.querySelectorAll('img')) : []"
)

_MEASURE_JS = """
(el) => {
  if (!el.isConnected || !el.shadowRoot) return [0, 0];
  const origin = el.getBoundingClientRect();
  let bottom = 0;
  for (const child of el.shadowRoot.children) {
    if (child.tagName === 'STYLE') continue;
    bottom = Math.max(bottom, child.getBoundingClientRect().bottom - origin.top);
  }
  return [bottom > 0 ? origin.width : 0, bottom];
}
"""

_IS_LOADED_JS = (
    "(img) => img.complete && img.naturalWidth !== 0 && img.naturalHeight !== 0"
)

_WAIT_SETTLED_JS = """
(img) => new Promise((resolve) => {
  if (img.complete) {
    resolve(img.naturalWidth !== 0);
    return;
  }
  const finish = (ok) => () => {
    img.removeEventListener('load', onLoad);
    img.removeEventListener('error', onError);
    resolve(ok);
  };
  const onLoad = finish(true);
  const onError = finish(false);
  img.addEventListener('load', onLoad);
  img.addEventListener('error', onError);
})
"""


class PlaywrightImageAsset:
    def __init__(self, element: ElementHandle) -> None:
        self._element = element

    async def is_loaded(self) -> bool:
        return bool(await self._element.evaluate(_IS_LOADED_JS))

    async def wait_settled(self) -> bool:
        return bool(await self._element.evaluate(_WAIT_SETTLED_JS))


class PlaywrightRenderHost:
    """
    Render host backed by a single Playwright page.
    """

    def __init__(self, page: Page) -> None:
        self._page = page
        self._elements: Dict[str, ElementHandle] = {}
        self._slots: Dict[str, int] = {}

    def _next_slot(self) -> int:
        taken = set(self._slots.values())
        slot = 0
        while slot in taken:
            slot += 1
        return slot

    async def attach(
        self,
        markup: str,
        style_rules: str,
        page_size: PageSize,
    ) -> StagingSurface:
        surface = StagingSurface(
            surface_id=f"pdf-surface-{uuid.uuid4().hex}",
            page_size=page_size,
        )
        slot = self._next_slot()
        left = (slot + 1) * (page_size.width + SLOT_GUTTER_PX)

        self._slots[surface.surface_id] = slot
        try:
            await self._page.evaluate(
                _ATTACH_JS,
                {
                    "id": surface.surface_id,
                    "markup": markup,
                    "css": style_rules,
                    "width": page_size.width,
                    "height": page_size.height,
                    "left": left,
                },
            )
            element = await self._page.query_selector(f"#{surface.surface_id}")
            if element is None:
                raise RuntimeError(
                    f"Staging container {surface.surface_id} was not attached"
                )
            self._elements[surface.surface_id] = element
            await self._page.evaluate(_SETTLE_JS)
        except BaseException:
            await self.detach(surface)
            raise

        return surface

    async def detach(self, surface: StagingSurface) -> None:
        self._slots.pop(surface.surface_id, None)
        element = self._elements.pop(surface.surface_id, None)
        await self._page.evaluate(_DETACH_JS, surface.surface_id)
        if element is not None:
            await element.dispose()

    async def is_attached(self, surface: StagingSurface) -> bool:
        return bool(
            await self._page.evaluate(_IS_ATTACHED_JS, surface.surface_id)
        )

    async def raster_assets(
        self,
        surface: StagingSurface,
    ) -> Sequence[RasterAsset]:
        element = self._elements.get(surface.surface_id)
        if element is None:
            return []

        array = await element.evaluate_handle(_IMAGES_JS)
        try:
            properties = await array.get_properties()
            assets: List[RasterAsset] = []
            for handle in properties.values():
                image = handle.as_element()
                if image is not None:
                    assets.append(PlaywrightImageAsset(image))
            return assets
        finally:
            await array.dispose()

    async def measure(self, surface: StagingSurface) -> tuple[float, float]:
        element = self._elements.get(surface.surface_id)
        if element is None:
            return 0.0, 0.0
        width, height = await element.evaluate(_MEASURE_JS)
        return float(width), float(height)

    async def capture(self, surface: StagingSurface) -> bytes:
        element = self._elements.get(surface.surface_id)
        if element is None:
            return b""
        return await element.screenshot(
            type="png",
            animations="disabled",
            caret="hide",
        )


@asynccontextmanager
async def launch_render_host(
    page_size: PageSize,
    scale: float,
) -> AsyncIterator[PlaywrightRenderHost]:
    """
    Launch headless Chromium and yield a render host for its single page.

    The viewport matches the page size, so every staged surface lies
    outside it. ``scale`` becomes the device scale factor of captures.
    """
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(
            headless=True,
            args=["--disable-dev-shm-usage"],
        )
        try:
            context = await browser.new_context(
                viewport={"width": page_size.width, "height": page_size.height},
                device_scale_factor=scale,
            )
            page = await context.new_page()
            await page.set_content(HOST_DOCUMENT)
            logger.info(
                "render_host_started",
                extra={
                    "browser_version": browser.version,
                    "device_scale_factor": scale,
                },
            )
            yield PlaywrightRenderHost(page)
        finally:
            await browser.close()
            logger.info("render_host_stopped")
