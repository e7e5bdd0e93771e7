import io
import numpy as np
from PIL import Image, UnidentifiedImageError
import pillow_heif
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
)

from .errors import ImageDecodeError

pillow_heif.register_heif_opener()

PDF_MAGIC = b"%PDF"

# Single-channel modes wider than 8 bits
HIGH_DEPTH_MODES = ("I;16", "I;16L", "I;16B", "I;16N", "I", "F")


def to_8bit(img: Image.Image) -> Image.Image:
    """
    Reduce high bit-depth greyscale to 8-bit "L" by dropping the low byte.
    Pillow's own convert() clips these modes at 255 instead of scaling.
    """
    if img.mode not in HIGH_DEPTH_MODES:
        return img
    arr = np.asarray(img, dtype=np.float64)
    if img.mode.startswith("I;16") or arr.max() > 255:
        arr = arr / 256.0
    return Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8))


def load_image(data: bytes) -> Image.Image:
    """
    Decodes an in-memory buffer (JPEG / PNG / WebP / HEIC / PDF) into a PIL image
    with 8-bit channels. PDFs are rasterised and only the first page is kept.
    Raises ImageDecodeError when the buffer is not an image at all.
    """
    if not data:
        raise ImageDecodeError("Empty image buffer")

    # -------- Case 1: PDF scan --------
    if data[:4] == PDF_MAGIC:
        try:
            pages = convert_from_bytes(data, dpi=300, first_page=1, last_page=1)
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            raise ImageDecodeError(f"Could not rasterise PDF: {e}") from e
        if not pages:
            raise ImageDecodeError("PDF has no pages")
        return pages[0].convert("RGB")

    # -------- Case 2: Normal image or HEIC --------
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e
    return to_8bit(img)
