"""Difference hash (dHash) for near-duplicate image detection.

The image is reduced to a (hash_size + 1) x hash_size grayscale thumbnail and
each bit records whether a pixel is brighter than its right neighbour. The
result survives re-encoding, mild resizing and small color shifts, so two
renders of the same dish land a few bits apart.
"""

from io import BytesIO

from PIL import Image, UnidentifiedImageError

from mealforge.services.exceptions import InvalidImageError


def compute_fingerprint(image_bytes: bytes, hash_size: int = 8) -> int:
    """Compute a hash_size**2-bit dHash of the encoded image.

    Args:
        image_bytes: Encoded image (PNG, JPEG, WebP, ...)
        hash_size: Hash side length (8 gives a 64-bit hash)

    Returns:
        Fingerprint as an unsigned integer

    Raises:
        InvalidImageError: If the bytes cannot be decoded as an image
    """
    try:
        with Image.open(BytesIO(image_bytes)) as im:
            gray = im.convert("L").resize((hash_size + 1, hash_size), Image.Resampling.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError(f"Cannot decode image: {e}") from e

    pixels = list(gray.getdata())
    value = 0
    for row in range(hash_size):
        offset = row * (hash_size + 1)
        for col in range(hash_size):
            value = (value << 1) | (1 if pixels[offset + col] > pixels[offset + col + 1] else 0)
    return value


def hamming_distance(a: int, b: int) -> int:
    return bin(a ^ b).count("1")


def to_hex(fingerprint: int, hash_size: int = 8) -> str:
    return f"{fingerprint:0{hash_size * hash_size // 4}x}"


def from_hex(value: str) -> int:
    return int(value, 16)
