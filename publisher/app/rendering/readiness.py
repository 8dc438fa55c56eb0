from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from publisher.app.rendering.host import RasterAsset, RenderHost, StagingSurface

logger = logging.getLogger("publisher.rendering")


@dataclass(frozen=True)
class AssetReadiness:
    total: int
    loaded: int
    failed: int


async def _settle(asset: RasterAsset) -> bool:
    if await asset.is_loaded():
        return True
    return await asset.wait_settled()


async def wait_until_ready(
    host: RenderHost,
    surface: StagingSurface,
) -> AssetReadiness:
    """
    Wait until every raster asset inside the surface has loaded or failed.

    The asset list is a snapshot taken at call time; elements inserted
    afterwards are not tracked. A failed asset counts as ready so one
    broken image cannot stall the pipeline. There is no timeout here;
    callers bound the wait if they need to.
    """
    assets = list(await host.raster_assets(surface))
    if not assets:
        return AssetReadiness(total=0, loaded=0, failed=0)

    outcomes = await asyncio.gather(*(_settle(asset) for asset in assets))

    loaded = sum(1 for ok in outcomes if ok)
    readiness = AssetReadiness(
        total=len(assets),
        loaded=loaded,
        failed=len(assets) - loaded,
    )

    if readiness.failed:
        logger.warning(
            "raster_assets_failed",
            extra={
                "surface_id": surface.surface_id,
                "failed": readiness.failed,
                "total": readiness.total,
            },
        )

    return readiness
