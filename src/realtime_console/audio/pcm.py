"""PCM16 encoding utilities.

The realtime service exchanges 16-bit signed little-endian mono PCM,
base64-encoded inside JSON events.
"""

import base64
import binascii
import io
import wave

BYTES_PER_SAMPLE: int = 2


def sample_count(pcm: bytes) -> int:
    """Number of whole samples in a PCM16 mono buffer."""
    return len(pcm) // BYTES_PER_SAMPLE


def samples_to_ms(samples: int, sample_rate: int) -> int:
    """Convert a sample count to whole milliseconds (floored).

    Args:
        samples: Number of samples
        sample_rate: Sample rate in Hz

    Returns:
        Duration in milliseconds
    """
    if sample_rate <= 0:
        raise ValueError(f"Sample rate must be positive, got {sample_rate}")
    return samples * 1000 // sample_rate


def encode_pcm(pcm: bytes) -> str:
    """Encode PCM bytes to base64 for JSON transport.

    Args:
        pcm: Raw PCM16 bytes

    Returns:
        Base64-encoded string

    Raises:
        ValueError: If the buffer holds a partial sample
    """
    if len(pcm) % BYTES_PER_SAMPLE:
        raise ValueError(f"PCM16 buffer must have an even length, got {len(pcm)} bytes")
    return base64.b64encode(pcm).decode("ascii")


def decode_pcm(encoded: str) -> bytes:
    """Decode a base64 string into PCM bytes.

    Args:
        encoded: Base64-encoded PCM16 audio

    Returns:
        Raw PCM16 bytes

    Raises:
        ValueError: If decoding fails or the result holds a partial sample
    """
    try:
        pcm = base64.b64decode(encoded, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ValueError(f"Failed to decode base64 audio: {e}") from e

    if len(pcm) % BYTES_PER_SAMPLE:
        raise ValueError(f"Decoded PCM16 buffer has odd length {len(pcm)}")
    return pcm


def pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Wrap mono PCM16 audio in a WAV container.

    Args:
        pcm: Raw PCM16 bytes (a trailing partial sample is dropped)
        sample_rate: Sample rate in Hz

    Returns:
        WAV file contents
    """
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(BYTES_PER_SAMPLE)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm[: sample_count(pcm) * BYTES_PER_SAMPLE])
    return buffer.getvalue()
