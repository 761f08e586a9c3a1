"""Dual hash computation for payment-proof images.

Cryptographic hash: SHA-256 over the raw bytes (byte-exact equality).
Perceptual hash: 64-bit DCT fingerprint from imagehash.phash. The image is
normalized to grayscale 32x32, DCT-transformed, and the 8x8 low-frequency
block becomes one bit per coefficient (above the block median or not).
Recompressed or lightly edited screenshots land within a few bits of each
other.

The width (PERCEPTUAL_HASH_BITS) is fixed for the lifetime of a duplicate
index; changing it makes stored fingerprints incomparable.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

import imagehash

from fxdesk.models.image_hash import ImageHashes
from fxdesk.utils.hash_utils import PERCEPTUAL_HASH_BITS, hash_prefix
from fxdesk.utils.image_utils import load_image_from_bytes, validate_image_bytes

logger = logging.getLogger(__name__)

LOW_FREQUENCY_SIZE = 8
HIGH_FREQUENCY_FACTOR = 4  # 8 * 4 = 32x32 DCT input


class HashComputer:
    """Produce {cryptographic_hash, perceptual_hash} from image bytes."""

    def __init__(
        self,
        hash_size: int = LOW_FREQUENCY_SIZE,
        highfreq_factor: int = HIGH_FREQUENCY_FACTOR,
    ):
        if hash_size * hash_size != PERCEPTUAL_HASH_BITS:
            raise ValueError(
                f"hash_size {hash_size} does not produce {PERCEPTUAL_HASH_BITS}-bit fingerprints"
            )
        self.hash_size = hash_size
        self.highfreq_factor = highfreq_factor

    def compute(self, image_bytes: bytes, mime_type: Optional[str] = None) -> ImageHashes:
        """Hash one image.

        Args:
            image_bytes: Raw image payload
            mime_type: Type already returned by validate_image_bytes(); the
                signature check is skipped when given

        Raises:
            InputError: If the payload is empty, not a supported image type,
                or cannot be decoded
        """
        if mime_type is None:
            validate_image_bytes(image_bytes)
        cryptographic_hash = self.cryptographic_hash(image_bytes)
        perceptual_hash = self.perceptual_hash(image_bytes)
        logger.debug(
            "Hashed image: sha256=%s phash=%s", hash_prefix(cryptographic_hash), perceptual_hash
        )
        return ImageHashes(cryptographic_hash=cryptographic_hash, perceptual_hash=perceptual_hash)

    @staticmethod
    def cryptographic_hash(image_bytes: bytes) -> str:
        return hashlib.sha256(image_bytes).hexdigest()

    def perceptual_hash(self, image_bytes: bytes) -> str:
        image = load_image_from_bytes(image_bytes)
        fingerprint = imagehash.phash(
            image, hash_size=self.hash_size, highfreq_factor=self.highfreq_factor
        )
        return "".join("1" if bit else "0" for bit in fingerprint.hash.flatten())
