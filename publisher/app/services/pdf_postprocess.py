"""
PDF post-processing.

This module inspects and finalizes a rasterized Begleitschein PDF before
upload:

- verifies the document has at least one page
- verifies every page matches the configured page size
- stamps document information (title, creator, producer)

Trust boundary:
- This module does NOT re-render or alter page content.
"""

from __future__ import annotations

import io

import pikepdf

from publisher.app.errors import RenderError
from publisher.app.rendering.host import PageSize

CREATOR = "begleitschein-publisher"

# MediaBox values are floats written by the rasterizer.
_MEDIABOX_TOLERANCE_PT = 0.5


def _check_page_geometry(pdf: pikepdf.Pdf, page_size: PageSize) -> None:
    expected_w, expected_h = page_size.points

    for index, page in enumerate(pdf.pages, start=1):
        llx, lly, urx, ury = (float(v) for v in page.mediabox)
        width, height = urx - llx, ury - lly
        if (
            abs(width - expected_w) > _MEDIABOX_TOLERANCE_PT
            or abs(height - expected_h) > _MEDIABOX_TOLERANCE_PT
        ):
            raise RenderError(
                f"Page {index} is {width:.1f}x{height:.1f} pt, "
                f"expected {expected_w:.1f}x{expected_h:.1f} pt."
            )


def finalize_pdf(
    pdf_bytes: bytes,
    *,
    title: str,
    page_size: PageSize,
) -> bytes:
    """
    Validate and stamp a rendered PDF.

    Raises:
        RenderError:
            If the binary is not a readable PDF, has no pages, or a page
            does not match ``page_size``.
    """
    try:
        pdf = pikepdf.open(io.BytesIO(pdf_bytes))
    except Exception as exc:
        raise RenderError(f"Rendered output is not a readable PDF: {exc}") from exc

    with pdf:
        if len(pdf.pages) == 0:
            raise RenderError("Rendered PDF contains no pages.")

        _check_page_geometry(pdf, page_size)

        pdf.docinfo["/Title"] = pikepdf.String(title)
        pdf.docinfo["/Creator"] = pikepdf.String(CREATOR)
        pdf.docinfo["/Producer"] = pikepdf.String(f"pikepdf {pikepdf.__version__}")

        buffer = io.BytesIO()
        pdf.save(buffer)
        return buffer.getvalue()
