"""Image preprocessing utilities.

Receipts arrive as JPEG/PNG photos or PDFs. Before they are sent to
the vision model PDFs are rasterised (first page only, PyMuPDF) and
photos are EXIF-transposed, converted to grayscale and downscaled so
the longest edge fits ``max_size`` pixels. Pillow is the imaging
backend.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Tuple

import fitz  # PyMuPDF for PDF rasterization
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"


class UnreadableDocumentError(ValueError):
    """Raised when a PDF has no renderable page or an image is too large to decode."""


def render_pdf_first_page(data: bytes, dpi: int = 144) -> bytes:
    """Render the first page of a PDF byte stream to PNG bytes."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise UnreadableDocumentError(f"PDF could not be opened: {exc}") from exc
    try:
        if doc.page_count < 1:
            raise UnreadableDocumentError("PDF has no pages")
        page = doc.load_page(0)
        zoom = dpi / 72.0  # base DPI is 72
        pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pix.tobytes("png")
    finally:
        doc.close()


def preprocess_image(image_data: bytes, max_size: int = 1600) -> bytes:
    """Preprocess an image for receipt extraction.

    Applies EXIF orientation, converts to grayscale and resizes the
    longest edge to ``max_size`` pixels while maintaining aspect ratio.
    Images Pillow cannot decode are returned unchanged and left for the
    model to reject.

    :param image_data: Raw image bytes
    :param max_size: Maximum size of the longest edge in pixels
    :returns: Processed image bytes in JPEG format
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            img = ImageOps.exif_transpose(img)
            img = img.convert("L")
            width, height = img.size
            max_dim = max(width, height)
            if max_dim > max_size:
                scale = max_size / float(max_dim)
                img = img.resize((int(width * scale), int(height * scale)))
            buf = BytesIO()
            img.save(buf, format="JPEG", quality=90)
            return buf.getvalue()
    except Image.DecompressionBombError as exc:
        raise UnreadableDocumentError(f"image too large to process: {exc}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("image preprocessing skipped: %s", exc)
        return image_data


def prepare_receipt_image(data: bytes, content_type: str) -> Tuple[bytes, str]:
    """Return ``(image_bytes, mime_type)`` ready to embed in a model request."""
    if content_type == PDF_MIME:
        data = render_pdf_first_page(data)
    processed = preprocess_image(data)
    if processed is data:
        mime = "image/png" if content_type in (PDF_MIME, "image/png") else "image/jpeg"
        return data, mime
    return processed, "image/jpeg"
