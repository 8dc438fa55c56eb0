"""
Render host abstraction.

A render host owns one live document (a browser page) into which markup
can be staged off-screen. The rest of the rendering package depends only
on the protocols declared here, so staging, readiness and rasterization
logic is identical for the Playwright host and for test doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


@dataclass(frozen=True)
class PageSize:
    """Physical page size in CSS pixels (96 dpi)."""

    width: int
    height: int

    def scaled(self, scale: float) -> tuple[int, int]:
        return round(self.width * scale), round(self.height * scale)

    @property
    def points(self) -> tuple[float, float]:
        # One CSS pixel is emitted as one PDF point.
        return float(self.width), float(self.height)


@dataclass(frozen=True)
class StagingSurface:
    """
    Handle to one off-screen container in the host document.

    Valid only inside the staging context that produced it.
    """

    surface_id: str
    page_size: PageSize


class RasterAsset(Protocol):
    """A raster element (``<img>``) inside a staged surface."""

    async def is_loaded(self) -> bool:
        """True if the asset finished loading with non-zero dimensions."""
        ...

    async def wait_settled(self) -> bool:
        """
        Wait until the asset loads or fails.

        Returns True on load, False on failure.
        """
        ...


class RenderHost(Protocol):
    async def attach(
        self,
        markup: str,
        style_rules: str,
        page_size: PageSize,
    ) -> StagingSurface:
        ...

    async def detach(self, surface: StagingSurface) -> None:
        ...

    async def is_attached(self, surface: StagingSurface) -> bool:
        ...

    async def raster_assets(
        self,
        surface: StagingSurface,
    ) -> Sequence[RasterAsset]:
        ...

    async def measure(self, surface: StagingSurface) -> tuple[float, float]:
        """Laid-out (width, height) of the surface in CSS pixels."""
        ...

    async def capture(self, surface: StagingSurface) -> bytes:
        """PNG of the full surface at the host's device scale factor."""
        ...
