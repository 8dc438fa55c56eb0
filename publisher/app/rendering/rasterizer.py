"""
Rasterization and pagination.

The staged surface is captured as a single PNG, flattened onto white,
cut into page-height bands and written as a multi-page PDF. The PDF
resolution is chosen so that one CSS pixel becomes one PDF point, which
keeps the output page size equal to the staging size regardless of the
capture scale.
"""

from __future__ import annotations

import io
import logging
import math
from typing import List, Tuple

import anyio.to_thread
from PIL import Image

from publisher.app.errors import RenderError
from publisher.app.rendering.host import PageSize, RenderHost, StagingSurface

logger = logging.getLogger("publisher.rendering")

WHITE = (255, 255, 255)


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (
        image.mode == "P" and "transparency" in image.info
    ):
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, WHITE + (255,))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return image.convert("RGB")


def paginate(
    png_bytes: bytes,
    page_size: PageSize,
    scale: float,
) -> List[Image.Image]:
    """
    Split a full-surface capture into opaque page images.

    Content within one CSS pixel of a page boundary does not open a
    new page.
    """
    try:
        capture = Image.open(io.BytesIO(png_bytes))
        capture.load()
    except Exception as exc:
        raise RenderError(f"Surface capture is not a readable image: {exc}") from exc

    capture = _flatten(capture)
    page_w, page_h = page_size.scaled(scale)

    if capture.width != page_w:
        height = max(1, round(capture.height * page_w / capture.width))
        capture = capture.resize((page_w, height), Image.Resampling.LANCZOS)

    tolerance = max(1, math.ceil(scale))
    page_count = max(1, math.ceil((capture.height - tolerance) / page_h))

    pages: List[Image.Image] = []
    for index in range(page_count):
        top = index * page_h
        band = capture.crop((0, top, page_w, min(top + page_h, capture.height)))
        page = Image.new("RGB", (page_w, page_h), WHITE)
        page.paste(band, (0, 0))
        pages.append(page)

    return pages


def write_pdf(pages: List[Image.Image], scale: float) -> bytes:
    buffer = io.BytesIO()
    pages[0].save(
        buffer,
        format="PDF",
        save_all=True,
        append_images=pages[1:],
        resolution=72.0 * scale,
    )
    return buffer.getvalue()


def _encode(png_bytes: bytes, page_size: PageSize, scale: float) -> Tuple[bytes, int]:
    pages = paginate(png_bytes, page_size, scale)
    return write_pdf(pages, scale), len(pages)


async def rasterize(
    host: RenderHost,
    surface: StagingSurface,
    page_size: PageSize,
    scale: float,
) -> bytes:
    """
    Convert a staged surface into a paginated PDF binary.

    Raises:
        RenderError:
            If the surface has no laid-out content or the capture is
            unusable.
    """
    width, height = await host.measure(surface)
    if width <= 0 or height <= 0:
        raise RenderError(
            f"Staged surface has no laid-out content ({width}x{height})."
        )

    png_bytes = await host.capture(surface)
    if not png_bytes:
        raise RenderError("Surface capture returned no image data.")

    # Pillow work runs off the event loop.
    pdf_bytes, page_count = await anyio.to_thread.run_sync(
        _encode, png_bytes, page_size, scale
    )

    logger.info(
        "surface_rasterized",
        extra={
            "surface_id": surface.surface_id,
            "pages": page_count,
            "content_height": height,
            "pdf_bytes": len(pdf_bytes),
        },
    )
    return pdf_bytes
