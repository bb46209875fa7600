# infrastructure/pdf/images.py
from dataclasses import dataclass
from io import BytesIO

from PIL import Image

from cardpress.config.settings import settings


@dataclass(frozen=True, eq=False)
class PdfImage:
    """A decoded image re-encoded as baseline JPEG, ready to embed with DCTDecode.

    Compared by identity: the writer embeds each instance once per document.
    """

    data: bytes
    width: int
    height: int


def _flatten(img: Image.Image) -> Image.Image:
    # JPEG can't have alpha; composite onto white like a printed card.
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, "white")
        background.paste(rgba, mask=rgba.split()[3])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def prepare_image(
    raw: bytes,
    max_side: int = settings.MAX_IMAGE_SIDE,
    quality: int = settings.JPEG_QUALITY,
) -> PdfImage:
    """Decode any Pillow-readable image and normalize it for embedding.

    Raises whatever Pillow raises for unreadable data (``UnidentifiedImageError``,
    ``OSError``, ``DecompressionBombError``).
    """
    with Image.open(BytesIO(raw)) as src:
        src.load()
        img = _flatten(src)
        w, h = img.size
        m = max(w, h)
        if m > max_side:
            scale = max_side / m
            img = img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS)

        buf = BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
        width, height = img.size
    return PdfImage(data=buf.getvalue(), width=width, height=height)
