"""Image payload helpers.

Captured photos travel as data URLs (``data:image/jpeg;base64,...``) or as
bare base64. These helpers normalize both forms, decode them with Pillow
for validation, and encode generated images back into data URLs.
"""

from __future__ import annotations

import base64
import binascii
import io

from PIL import Image, ImageDraw, UnidentifiedImageError

# Largest decoded photo accepted from the capture surface.
MAX_PHOTO_BYTES = 8 * 1024 * 1024
# Gemini rejects very small inputs; anything below this is a blank frame.
MIN_DIMENSION = 64


class InvalidImageError(ValueError):
    """Photo payload is not a decodable image."""


def strip_data_url(payload: str) -> str:
    """Return the bare base64 part of a data URL (or the input unchanged)."""
    if not payload:
        return ""
    if "," in payload:
        return payload.split(",", 1)[1]
    return payload


def mime_type_of(payload: str, default: str = "image/jpeg") -> str:
    if payload.startswith("data:") and ";" in payload:
        return payload[5 : payload.index(";")] or default
    return default


def decode_bytes(payload: str) -> bytes:
    """Decode a data URL / base64 string; raises InvalidImageError."""
    raw = strip_data_url(payload)
    if not raw:
        raise InvalidImageError("empty photo payload")
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("photo payload is not valid base64") from exc
    if len(data) > MAX_PHOTO_BYTES:
        raise InvalidImageError(
            f"photo payload too large ({len(data)} bytes, limit {MAX_PHOTO_BYTES})"
        )
    return data


def decode_image(payload: str) -> Image.Image:
    """Decode a photo payload into a loaded PIL image."""
    data = decode_bytes(payload)
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("photo payload is not a supported image") from exc
    return img


def validate_photo(payload: str) -> tuple[int, int]:
    """Check a captured photo decodes and is large enough. Returns (w, h)."""
    img = decode_image(payload)
    w, h = img.size
    if min(w, h) < MIN_DIMENSION:
        raise InvalidImageError(f"photo too small ({w}x{h}, minimum {MIN_DIMENSION}px)")
    return w, h


def to_data_url(image: Image.Image, fmt: str = "PNG") -> str:
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    mime = f"image/{fmt.lower()}"
    return f"data:{mime};base64,{base64.b64encode(buf.getvalue()).decode('ascii')}"


def bytes_to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


# Overlay colors for the surgical plan
HAIRLINE_COLOR = (220, 38, 38, 255)  # red outline
DENSITY_FILL = (37, 99, 235, 90)  # translucent blue
DENSITY_OUTLINE = (37, 99, 235, 200)
HAIRLINE_WIDTH_FRACTION = 0.006  # of the shorter image side


def _coordinate_scale(points: list[tuple[float, float]]) -> float:
    """Polygons arrive normalized (0-1), as percent (0-100) or per-mille."""
    largest = max((max(abs(x), abs(y)) for x, y in points), default=0.0)
    if largest <= 1.0:
        return 1.0
    if largest <= 100.0:
        return 100.0
    return 1000.0


def _to_pixels(
    points: list[tuple[float, float]], size: tuple[int, int], scale: float
) -> list[tuple[int, int]]:
    w, h = size
    return [(int(x / scale * w), int(y / scale * h)) for x, y in points]


def draw_surgical_plan(
    image: Image.Image,
    hairline: list[tuple[float, float]],
    density_zone: list[tuple[float, float]],
) -> Image.Image:
    """Draw the planned hairline and high-density zone over a photo.

    Returns a new RGB image; the input is not modified. Raises ValueError
    when the hairline polygon has fewer than three points.
    """
    if len(hairline) < 3:
        raise ValueError("hairline polygon needs at least three points")
    scale = _coordinate_scale(hairline + density_zone)

    base = image.copy().convert("RGBA")
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    if len(density_zone) >= 3:
        draw.polygon(
            _to_pixels(density_zone, base.size, scale),
            fill=DENSITY_FILL,
            outline=DENSITY_OUTLINE,
        )

    outline = _to_pixels(hairline, base.size, scale)
    width = max(2, int(min(base.size) * HAIRLINE_WIDTH_FRACTION))
    draw.line([*outline, outline[0]], fill=HAIRLINE_COLOR, width=width, joint="curve")

    return Image.alpha_composite(base, overlay).convert("RGB")
