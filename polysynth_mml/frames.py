# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import struct
from dataclasses import dataclass, field
from typing import Final, NamedTuple

from .voice import Waveform


MAX_TIME_SCALE: Final = 0x10000

FRAME_MAP_MAGIC: Final = b"PSMF"
FRAME_MAP_VERSION: Final = 1

MAX_CHANNELS: Final = 0xFF
MAX_FRAMES_PER_CHANNEL: Final = 0xFFFF

# MUST MATCH `struct seq_frame_t` of the playback engine
FRAME_MAP_HEADER_STRUCT: Final = struct.Struct("<4sBB")
FRAME_COUNT_STRUCT: Final = struct.Struct("<H")
FRAME_STRUCT: Final = struct.Struct("<BHBHB")


@dataclass
class Frame:
    waveform: Waveform
    # Envelope duration in time units, minus 1
    adsr_time_scale_1: int
    adsr_release_start: int

    @property
    def duration_units(self) -> int:
        return self.adsr_time_scale_1 + 1

    def is_pause(self) -> bool:
        return self.waveform.period == 0


class ChannelTime(NamedTuple):
    seconds: float
    samples: int


@dataclass
class FrameMap:
    channels: list[list[Frame]] = field(default_factory=list)

    # Total time played by each channel
    channel_times: list[ChannelTime] = field(default_factory=list)

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    def stats_string(self) -> str:
        return "\n".join(f"Channel {chr(ord('A') + i)}: {t.seconds:f}s ({t.samples} samples)" for i, t in enumerate(self.channel_times))

    def release(self) -> None:
        "Release all frame storage.  The frame map is empty afterwards."
        for c in self.channels:
            c.clear()
        self.channels.clear()
        self.channel_times.clear()


def frame_map_to_bytes(frame_map: FrameMap) -> bytes:
    if frame_map.channel_count > MAX_CHANNELS:
        raise ValueError(f"Too many channels: {frame_map.channel_count}, max is {MAX_CHANNELS}")

    out = bytearray(FRAME_MAP_HEADER_STRUCT.pack(FRAME_MAP_MAGIC, FRAME_MAP_VERSION, frame_map.channel_count))

    for i, frames in enumerate(frame_map.channels):
        if len(frames) > MAX_FRAMES_PER_CHANNEL:
            raise ValueError(f"Too many frames in channel {i}: {len(frames)}, max is {MAX_FRAMES_PER_CHANNEL}")

        out += FRAME_COUNT_STRUCT.pack(len(frames))

        for f in frames:
            out += FRAME_STRUCT.pack(
                f.waveform.mode,
                f.waveform.period,
                f.waveform.amplitude,
                f.adsr_time_scale_1,
                f.adsr_release_start,
            )

    return bytes(out)
