import struct

import numpy as np

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
WAV_HEADER_BYTES = 44


def pcm16_mono_to_wav(pcm_bytes: bytes, sample_rate: int = INPUT_SAMPLE_RATE) -> bytes:
    """Wrap raw PCM16 mono bytes into a WAV container."""
    channels = 1
    bits_per_sample = 16
    byte_rate = sample_rate * channels * (bits_per_sample // 8)
    block_align = channels * (bits_per_sample // 8)
    data_size = len(pcm_bytes)

    header = struct.pack(
        '<4sI4s4sIHHIIHH4sI',
        b'RIFF', 36 + data_size, b'WAVE',
        b'fmt ', 16, 1, channels,
        sample_rate, byte_rate, block_align, bits_per_sample,
        b'data', data_size
    )
    return header + pcm_bytes


def pcm16_to_float32(pcm_bytes: bytes) -> np.ndarray:
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    return np.frombuffer(pcm_bytes[:usable], dtype="<i2").astype(np.float32) / 32768.0


def pcm_duration_ms(pcm_bytes: bytes, sample_rate: int = INPUT_SAMPLE_RATE) -> int:
    return (len(pcm_bytes) // 2) * 1000 // sample_rate


def audio_level(pcm_bytes: bytes, sample_rate: int = INPUT_SAMPLE_RATE) -> dict:
    """RMS and peak level of a PCM16 clip, used by the microphone check."""
    samples = pcm16_to_float32(pcm_bytes)
    if samples.size == 0:
        return {"level": 0.0, "peak": 0.0, "duration_ms": 0, "detected": False}
    rms = float(np.sqrt(np.mean(np.square(samples))))
    peak = float(np.max(np.abs(samples)))
    return {
        "level": round(min(1.0, rms), 4),
        "peak": round(min(1.0, peak), 4),
        "duration_ms": pcm_duration_ms(pcm_bytes, sample_rate),
        "detected": rms >= 0.01,
    }
