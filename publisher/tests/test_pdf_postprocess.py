import io

import pikepdf
import pytest
from PIL import Image

from publisher.app.errors import RenderError
from publisher.app.rendering.host import PageSize
from publisher.app.rendering.rasterizer import write_pdf
from publisher.app.services.pdf_postprocess import finalize_pdf

PAGE = PageSize(width=794, height=1123)


def _pdf(width_px: int, height_px: int, pages: int = 1, scale: float = 2.0) -> bytes:
    images = [
        Image.new("RGB", (width_px, height_px), (255, 255, 255))
        for _ in range(pages)
    ]
    return write_pdf(images, scale)


def test_finalize_stamps_document_information():
    finalized = finalize_pdf(_pdf(1588, 2246, pages=2), title="Begleitschein - BR-1", page_size=PAGE)

    with pikepdf.open(io.BytesIO(finalized)) as pdf:
        assert str(pdf.docinfo["/Title"]) == "Begleitschein - BR-1"
        assert str(pdf.docinfo["/Creator"]) == "begleitschein-publisher"
        assert len(pdf.pages) == 2


def test_finalize_rejects_wrong_page_size():
    letter_ish = _pdf(1632, 2112)

    with pytest.raises(RenderError):
        finalize_pdf(letter_ish, title="x", page_size=PAGE)


def test_finalize_rejects_non_pdf_bytes():
    with pytest.raises(RenderError):
        finalize_pdf(b"not a pdf at all", title="x", page_size=PAGE)


def test_finalize_rejects_pdf_without_pages():
    buffer = io.BytesIO()
    with pikepdf.new() as pdf:
        pdf.save(buffer)

    with pytest.raises(RenderError):
        finalize_pdf(buffer.getvalue(), title="x", page_size=PAGE)
