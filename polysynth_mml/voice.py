# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

from enum import IntEnum, unique
from typing import Final, NamedTuple


MAX_AMPLITUDE: Final = 128

MIN_PERIOD: Final = 2
MAX_PERIOD: Final = 0xFFFF


# Values MUST MATCH the waveform modes of the playback engine
@unique
class WaveformMode(IntEnum):
    DC = 0
    SQUARE = 1


class Waveform(NamedTuple):
    mode: WaveformMode
    # Waveform period in samples
    period: int
    amplitude: int


def setup_waveform(frequency: int, volume: int, sample_rate: int) -> Waveform:
    """
    Build the waveform descriptor of a frame.

    A frequency of 0 is a pause (silence).
    Raises ValueError if the descriptor cannot be packed.
    """

    if volume < 0 or volume > MAX_AMPLITUDE:
        raise ValueError(f"Amplitude out of range (0-{MAX_AMPLITUDE}): {volume}")

    if frequency == 0:
        return Waveform(WaveformMode.DC, 0, 0)

    if frequency < 0:
        raise ValueError(f"Invalid frequency: {frequency}")

    period: Final = sample_rate // frequency
    if period < MIN_PERIOD or period > MAX_PERIOD:
        raise ValueError(f"Waveform period out of range ({MIN_PERIOD}-{MAX_PERIOD}): {period}")

    return Waveform(WaveformMode.SQUARE, period, volume)
