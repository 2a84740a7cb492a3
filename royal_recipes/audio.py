"""Container for the raw speech audio the generation service returns.

Speech comes back as headerless 16-bit mono PCM at 24 kHz. ``pcm_to_wav`` is
the pcm to container step: it adds the 44 byte RIFF/WAVE header browsers need
before they will play it.
"""

import base64
import struct


SPEECH_SAMPLE_RATE = 24000
WAV_HEADER_SIZE = 44
PCM_FORMAT = 1


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int,
    *,
    channels: int = 1,
    bits_per_sample: int = 16,
) -> bytes:
    """Wrap raw little-endian PCM samples in a canonical 44 byte WAV header.

    The payload is not checked against the block alignment. A trailing partial
    sample is written as is.
    """
    byte_rate = sample_rate * channels * bits_per_sample // 8
    block_align = channels * bits_per_sample // 8
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + len(pcm),
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        len(pcm),
    )
    return header + bytes(pcm)


def wav_data_uri(wav: bytes) -> str:
    return f"data:audio/wav;base64,{base64.b64encode(wav).decode('utf-8')}"


def data_uri_payload(uri: str) -> bytes:
    """The decoded bytes of a ``data:<mime>;base64,<payload>`` uri."""
    header, _, payload = uri.partition(",")
    if not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError(f"Not a base64 data uri: {header[:40]}")
    return base64.b64decode(payload)
