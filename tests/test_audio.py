import struct

from audio import pcm16_mono_to_wav, pcm16_to_float32, pcm_duration_ms, audio_level
from audio_samples import silence, tone


def test_wav_header_describes_pcm16_mono():
    pcm = b"\x00\x00" * 160
    wav = pcm16_mono_to_wav(pcm, 16000)
    assert wav[:4] == b"RIFF" and wav[8:12] == b"WAVE"
    channels, rate = struct.unpack("<HI", wav[22:28])
    assert (channels, rate) == (1, 16000)
    assert struct.unpack("<I", wav[40:44])[0] == len(pcm)
    assert wav[44:] == pcm


def test_pcm16_samples_scale_to_unit_range():
    pcm = struct.pack("<3h", 32767, -32768, 0) + b"\x01"
    samples = pcm16_to_float32(pcm)
    assert len(samples) == 3
    assert samples[0] > 0.99 and samples[1] == -1.0 and samples[2] == 0.0


def test_duration_ms():
    assert pcm_duration_ms(b"\x00" * 32000) == 1000


def test_audio_level_detects_tone_and_silence():
    loud = audio_level(tone(0.25, amplitude=0.5))
    assert loud["detected"] is True
    assert 0.3 < loud["level"] < 0.4
    assert loud["duration_ms"] == 250

    quiet = audio_level(silence(0.25))
    assert quiet["detected"] is False
    assert quiet["level"] == 0.0

    assert audio_level(b"")["duration_ms"] == 0
