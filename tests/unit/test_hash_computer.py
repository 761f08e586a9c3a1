import hashlib

import imagehash
import pytest
from PIL import Image

from fxdesk.models.duplicate import SubmissionContext
from fxdesk.services import duplicate_detector as detector_module
from fxdesk.services import hash_computer as hash_computer_module
from fxdesk.services.hash_computer import HashComputer
from fxdesk.utils import image_utils
from fxdesk.utils.hash_utils import hamming_distance
from fxdesk.utils.helpers.exceptions import InputError


@pytest.fixture
def computer() -> HashComputer:
    return HashComputer()


def test_compute_returns_sha256_and_64_bit_fingerprint(computer, proof_image):
    data = proof_image(seed=1)
    hashes = computer.compute(data)

    assert hashes.cryptographic_hash == hashlib.sha256(data).hexdigest()
    assert len(hashes.perceptual_hash) == 64
    assert set(hashes.perceptual_hash) <= {"0", "1"}


def test_hashing_is_deterministic(computer, proof_image):
    data = proof_image(seed=2)
    assert computer.compute(data) == computer.compute(data)


def test_recompressed_copy_stays_perceptually_close(computer, proof_image):
    original = computer.compute(proof_image(seed=3, fmt="PNG"))
    recompressed = computer.compute(proof_image(seed=3, fmt="JPEG", quality=85))

    assert original.cryptographic_hash != recompressed.cryptographic_hash
    assert hamming_distance(original.perceptual_hash, recompressed.perceptual_hash) <= 6


def test_unrelated_images_are_far_apart(computer, proof_image):
    first = computer.compute(proof_image(seed=10))
    second = computer.compute(proof_image(seed=11))
    assert hamming_distance(first.perceptual_hash, second.perceptual_hash) > 10


def test_empty_payload_rejected(computer):
    with pytest.raises(InputError):
        computer.compute(b"")


def test_non_image_payload_rejected(computer):
    with pytest.raises(InputError):
        computer.compute(b"%PDF-1.7 not an image")


def test_truncated_image_rejected(computer, proof_image):
    data = proof_image(seed=4, fmt="JPEG")
    with pytest.raises(InputError):
        computer.compute(data[:40])


def test_fingerprint_matches_imagehash_phash(computer, proof_image):
    data = proof_image(seed=5)
    expected = imagehash.phash(image_utils.load_image_from_bytes(data))

    fingerprint = computer.compute(data).perceptual_hash
    assert imagehash.hex_to_hash(f"{int(fingerprint, 2):016x}") == expected


@pytest.mark.parametrize("max_pixels", [1000, 40000])
def test_oversized_image_rejected(computer, proof_image, monkeypatch, max_pixels):
    # 256x256 = 65536 pixels: past the hard limit at 1000, in the warning band at 40000.
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", max_pixels)

    with pytest.raises(InputError, match="too large"):
        computer.compute(proof_image(seed=6))


def test_oversized_submission_writes_nothing(duplicate_detector, duplicate_index, proof_image, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(InputError):
        duplicate_detector.submit(proof_image(seed=7), SubmissionContext(user_id="user-1"), threshold=5)
    assert duplicate_index.count_records() == 0


def test_submission_checks_signature_once(duplicate_detector, proof_image, monkeypatch):
    calls = []

    def counting_validate(data):
        calls.append(len(data))
        return image_utils.validate_image_bytes(data)

    monkeypatch.setattr(detector_module, "validate_image_bytes", counting_validate)
    monkeypatch.setattr(hash_computer_module, "validate_image_bytes", counting_validate)

    duplicate_detector.submit(proof_image(seed=8), SubmissionContext(user_id="user-1"), threshold=5)
    assert len(calls) == 1
