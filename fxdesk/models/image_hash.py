"""Image hash records for payment-proof duplicate detection.

Every submitted payment-proof image leaves exactly one ImageHashRecord behind,
whatever it was classified as, so later submissions compare against it.

Key Principles:
- Append-only (records are never updated after insert)
- Only retention cleanup deletes records
- All perceptual hashes share one fixed width (PERCEPTUAL_HASH_BITS)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class ImageHashes(BaseModel):
    """Pair of digests produced by the hash computer for one image."""

    cryptographic_hash: str = Field(..., description="SHA-256 hex digest of the raw bytes")
    perceptual_hash: str = Field(..., description="Fixed-width bit string fingerprint")


class ImageHashMetadata(BaseModel):
    """Descriptive metadata captured alongside a hash record."""

    image_size: Optional[int] = Field(default=None, description="Raw image size in bytes")
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    processing_time_ms: Optional[float] = Field(
        default=None,
        description="Time spent hashing and classifying the submission",
    )
    detection_method: Optional[str] = Field(default="dual-hash")
    hamming_threshold: Optional[int] = Field(
        default=None,
        description="Threshold the submission was classified with",
    )


class ImageHashRecord(BaseModel):
    """Stored fingerprint of a submitted payment-proof image.

    Attributes:
        id: Record identifier (uuid string)
        cryptographic_hash: 64 lowercase hex chars
        perceptual_hash: bit string of PERCEPTUAL_HASH_BITS characters
        image_url: Where the proof image lives (CDN url or message media id)
        transaction_id: Transaction the proof was submitted for, if any
        payment_reference: Payment reference quoted by the user, if any
        user_id: Submitting user
        message_id: Inbound WhatsApp message carrying the image
        metadata: Size, filename, mime type, timing, method, threshold
        created_at: Insert time (UTC); ties in similarity search go to the
            earliest record
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    cryptographic_hash: str
    perceptual_hash: str
    image_url: str = ""
    transaction_id: Optional[str] = None
    payment_reference: Optional[str] = None
    user_id: Optional[str] = None
    message_id: Optional[str] = None
    metadata: ImageHashMetadata = Field(default_factory=ImageHashMetadata)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def hashes(self) -> ImageHashes:
        return ImageHashes(
            cryptographic_hash=self.cryptographic_hash,
            perceptual_hash=self.perceptual_hash,
        )
