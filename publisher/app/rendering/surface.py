from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator

from publisher.app.rendering.host import PageSize, RenderHost, StagingSurface

logger = logging.getLogger("publisher.rendering")

_CSS_IMPORT_RE = re.compile(r"@import[^;]+;")


def strip_css_imports(css: str) -> str:
    """
    Remove every ``@import`` rule from a stylesheet.

    Remote font or stylesheet fetches would race the capture.
    """
    return _CSS_IMPORT_RE.sub("", css)


@asynccontextmanager
async def stage_surface(
    host: RenderHost,
    markup: str,
    style_rules: str,
    page_size: PageSize,
    *,
    strip_imports: bool = True,
) -> AsyncIterator[StagingSurface]:
    """
    Attach markup to the host document off-screen for the duration of
    the context.

    The surface is attached exactly once and detached on every exit
    path, including errors and cancellation inside the block.
    """
    if strip_imports:
        style_rules = strip_css_imports(style_rules)

    surface = await host.attach(markup, style_rules, page_size)
    logger.debug(
        "surface_staged",
        extra={
            "surface_id": surface.surface_id,
            "markup_length": len(markup),
        },
    )

    try:
        yield surface
    finally:
        await host.detach(surface)
        logger.debug(
            "surface_unstaged",
            extra={"surface_id": surface.surface_id},
        )
