import io
from typing import List

from PIL import Image, ImageEnhance

from .models import Comic
from .utils import image_bytes_to_pil, pil_to_png_bytes


def apply_contrast(img: Image.Image, contrast: int = 100) -> Image.Image:
    """contrast is a percentage, 100 leaves the image unchanged."""
    if contrast == 100:
        return img
    rgb = img.convert("RGB")
    return ImageEnhance.Contrast(rgb).enhance(max(contrast, 0) / 100)


def export_page(comic: Comic, index: int, contrast: int = 100) -> bytes:
    """Single page as PNG bytes, with the viewer's contrast applied."""
    if not 0 <= index < len(comic.pages):
        raise IndexError(f"Comic has no page {index + 1}")
    img = image_bytes_to_pil(comic.pages[index].image_bytes)
    return pil_to_png_bytes(apply_contrast(img, contrast))


def _page_images(comic: Comic) -> List[Image.Image]:
    return [image_bytes_to_pil(p.image_bytes) for p in comic.pages]


def export_webcomic(comic: Comic) -> bytes:
    """Stitch every page top to bottom into one tall PNG."""
    if len(comic.pages) <= 1:
        raise ValueError("A webcomic needs more than one page")
    images = _page_images(comic)

    total_width = max(img.width for img in images)
    total_height = sum(img.height for img in images)
    canvas = Image.new("RGBA", (total_width, total_height), (255, 255, 255, 255))

    current_y = 0
    for img in images:
        canvas.paste(img, (0, current_y))
        current_y += img.height
    return pil_to_png_bytes(canvas)


def export_pdf(comic: Comic, contrast: int = 100) -> bytes:
    """One PDF page per comic page."""
    pages = [apply_contrast(img, contrast).convert("RGB") for img in _page_images(comic)]
    buf = io.BytesIO()
    pages[0].save(buf, format="PDF", save_all=True, append_images=pages[1:])
    return buf.getvalue()
