"""
Checks applied to uploaded product images before they leave the process.

Images arrive as base64 data URIs. ``validate_image`` decodes them and
checks the declared MIME type, the decoded size, the file signature and
the pixel dimensions (via Pillow). Each failure raises a
``ValidationError`` naming what was wrong.
"""
import base64
import binascii
import html
import io
import re
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from storefront.core.errors import ValidationError

MAX_FILE_SIZE = 5 * 1024 * 1024
MIN_FILE_SIZE = 1024
MAX_IMAGES_PER_PRODUCT = 20
ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_ALT_TEXT_LENGTH = 255
MIN_DIMENSION = 100
MAX_DIMENSION = 10000

DATA_URI_PATTERN = re.compile(r"^data:([A-Za-z\-+/]+);base64,(.+)$", re.DOTALL)
CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f]")
SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
EVENT_HANDLER = re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)


@dataclass
class ValidatedImage:
    data: bytes
    mime_type: str
    size: int
    width: int
    height: int

    def as_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def has_image_signature(data: bytes) -> bool:
    if data[:3] == b"\xff\xd8\xff":
        return True
    if data[:4] == b"\x89PNG":
        return True
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def read_dimensions(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError):
        raise ValidationError("Corrupted or invalid image file")
    if not width or not height:
        raise ValidationError("Invalid image: missing dimensions")
    return width, height


def validate_image(data_uri: str) -> ValidatedImage:
    match = DATA_URI_PATTERN.match(data_uri)
    if not match:
        raise ValidationError("Invalid base64 format")
    mime_type, payload = match.group(1), match.group(2)

    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid MIME type: {mime_type}. Allowed: {', '.join(ALLOWED_MIME_TYPES)}"
        )

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 format")

    size = len(data)
    if size < MIN_FILE_SIZE:
        raise ValidationError(f"File too small (minimum {MIN_FILE_SIZE // 1024}KB)")
    if size > MAX_FILE_SIZE:
        raise ValidationError(
            f"File too large (maximum {MAX_FILE_SIZE // (1024 * 1024)}MB)"
        )

    if not has_image_signature(data):
        raise ValidationError(
            "Invalid file type. File content does not match declared MIME type."
        )

    width, height = read_dimensions(data)
    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        raise ValidationError(
            f"Image too small (minimum {MIN_DIMENSION}x{MIN_DIMENSION}px)"
        )
    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise ValidationError(
            f"Image too large (maximum {MAX_DIMENSION}x{MAX_DIMENSION}px)"
        )

    return ValidatedImage(
        data=data, mime_type=mime_type, size=size, width=width, height=height
    )


def sanitize_alt_text(alt_text: str | None) -> str:
    if not alt_text:
        return ""
    text = CONTROL_CHARS.sub("", alt_text)
    # Markup is removed before escaping, escaped text no longer matches
    text = SCRIPT_BLOCK.sub("", text)
    text = EVENT_HANDLER.sub("", text)
    text = html.escape(text, quote=True)
    return text.strip()[:MAX_ALT_TEXT_LENGTH]
