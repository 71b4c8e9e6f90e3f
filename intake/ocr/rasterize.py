"""Turn uploaded documents into page images for the recognition engine.

Images are decoded with Pillow; PDFs are rendered page by page with PyMuPDF.
"""

import io
import logging

import pymupdf
from PIL import Image, UnidentifiedImageError

from intake.shared.errors import UnsupportedDocumentError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def is_image_mime(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def render_pages(data: bytes, mime_type: str, dpi: int = 300, max_pages: int = 5) -> list[Image.Image]:
    """Decode a document into RGB page images.

    Args:
        data: Raw file bytes
        mime_type: MIME type reported for the upload
        dpi: Rendering resolution for PDF pages
        max_pages: Upper bound on rendered pages (PDF) or frames (multi-page TIFF)

    Returns:
        Page images in document order

    Raises:
        UnsupportedDocumentError: If the bytes cannot be decoded as the given type
    """
    if not data:
        raise UnsupportedDocumentError("Empty document")
    if mime_type == PDF_MIME_TYPE:
        return _render_pdf(data, dpi, max_pages)
    if is_image_mime(mime_type):
        return _open_image(data, max_pages)
    raise UnsupportedDocumentError(f"Unsupported mime type: {mime_type}")


def _open_image(data: bytes, max_pages: int) -> list[Image.Image]:
    try:
        image = Image.open(io.BytesIO(data))
        frames = []
        for index in range(min(getattr(image, "n_frames", 1), max_pages)):
            image.seek(index)
            frames.append(image.convert("RGB"))
        return frames
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedDocumentError(f"Cannot decode image: {e}") from e


def _render_pdf(data: bytes, dpi: int, max_pages: int) -> list[Image.Image]:
    try:
        with pymupdf.open(stream=data, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
            if doc.page_count > max_pages:
                logger.warning(f"PDF has {doc.page_count} pages, rendering the first {max_pages}")
            pages = []
            for page in doc.pages(0, min(doc.page_count, max_pages)):
                pixmap = page.get_pixmap(dpi=dpi)
                pages.append(Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples))
            return pages
    except UnsupportedDocumentError:
        raise
    except Exception as e:
        raise UnsupportedDocumentError(f"Cannot render PDF: {e}") from e


def to_png(image: Image.Image) -> bytes:
    """Encode a page image as PNG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
