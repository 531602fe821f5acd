"""
Perceptual image fingerprint for the change cascade

average_hash downsamples to a hash_size x hash_size grayscale grid and
thresholds every pixel against the grid mean, giving hash_size**2 bits.
"""

import io

import imagehash
from PIL import Image


def compute_image_hash(image_bytes: bytes, hash_size: int = 8) -> str:
    """Hex fingerprint of an encoded image (PNG/JPEG/...)"""
    with Image.open(io.BytesIO(image_bytes)) as image:
        return str(imagehash.average_hash(image, hash_size=hash_size))


def hash_distance(first: str, second: str) -> int:
    """Hamming distance; fingerprints of different sizes are maximally distant"""
    a = imagehash.hex_to_hash(first)
    b = imagehash.hex_to_hash(second)
    if a.hash.shape != b.hash.shape:
        return max(a.hash.size, b.hash.size)
    return int(a - b)
