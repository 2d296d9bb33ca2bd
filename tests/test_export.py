import io

import pytest
from PIL import Image

from conftest import make_png
from ecomatrix.export import export_page, export_pdf, export_webcomic
from ecomatrix.models import Comic


def test_page_export_without_contrast_keeps_pixels() -> None:
    comic = Comic.from_images([make_png((200, 100, 50))])

    img = Image.open(io.BytesIO(export_page(comic, 0)))

    assert img.convert("RGB").getpixel((0, 0)) == (200, 100, 50)


def test_page_export_contrast_changes_pixels() -> None:
    comic = Comic.from_images([make_png((200, 100, 50))])

    img = Image.open(io.BytesIO(export_page(comic, 0, contrast=150)))

    assert img.convert("RGB").getpixel((0, 0)) != (200, 100, 50)


def test_page_export_rejects_missing_page() -> None:
    with pytest.raises(IndexError):
        export_page(Comic.from_images([make_png()]), 1)


def test_webcomic_stacks_pages_vertically() -> None:
    comic = Comic.from_images([make_png(size=(10, 4)), make_png(size=(6, 5))])

    img = Image.open(io.BytesIO(export_webcomic(comic)))

    assert img.size == (10, 9)


def test_webcomic_needs_more_than_one_page() -> None:
    with pytest.raises(ValueError):
        export_webcomic(Comic.from_images([make_png()]))


def test_pdf_export() -> None:
    comic = Comic.from_images([make_png(), make_png((0, 0, 0))])

    assert export_pdf(comic).startswith(b"%PDF")
