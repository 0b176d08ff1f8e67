# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import math
from typing import Final

import PIL.Image  # type: ignore
import PIL.ImageDraw  # type: ignore

from .frames import FrameMap
from .json_formats import SynthSettings, Filename
from .mml_compiler import REFERENCE_FREQUENCY, REFERENCE_NOTE_CODE, SEMITONES_PER_OCTAVE


# One pixel row per note code (the `>` command can reach above note code 84)
N_PITCH_ROWS: Final = 120
NOTE_HEIGHT: Final = 2
CHANNEL_SEPARATOR_HEIGHT: Final = 1

CHANNEL_HEIGHT: Final = N_PITCH_ROWS + NOTE_HEIGHT + CHANNEL_SEPARATOR_HEIGHT

DEFAULT_SAMPLES_PER_PIXEL: Final = 256

BACKGROUND_COLOR: Final = (32, 32, 32)
SEPARATOR_COLOR: Final = (96, 96, 96)
NOTE_COLOR: Final = (64, 192, 255)
RELEASE_COLOR: Final = (32, 96, 128)


def note_row(frequency: float) -> int:
    "Returns the pixel row of a frequency, row 0 is the highest note"
    code: Final = round(SEMITONES_PER_OCTAVE * math.log2(frequency / REFERENCE_FREQUENCY)) + REFERENCE_NOTE_CODE
    return N_PITCH_ROWS - 1 - min(N_PITCH_ROWS - 1, max(0, code))


def draw_piano_roll(frame_map: FrameMap, settings: SynthSettings, samples_per_pixel: int = DEFAULT_SAMPLES_PER_PIXEL) -> PIL.Image.Image:
    if samples_per_pixel < 1:
        raise ValueError("samples_per_pixel must be > 0")

    tu: Final = settings.time_units_per_envelope

    total_samples = 0
    for frames in frame_map.channels:
        total_samples = max(total_samples, sum(f.duration_units * tu for f in frames))

    width: Final = max(1, math.ceil(total_samples / samples_per_pixel))
    height: Final = max(1, frame_map.channel_count * CHANNEL_HEIGHT)

    image: Final = PIL.Image.new("RGB", (width, height), BACKGROUND_COLOR)
    draw: Final = PIL.ImageDraw.Draw(image)

    for ch, frames in enumerate(frame_map.channels):
        top = ch * CHANNEL_HEIGHT

        sep_y = top + CHANNEL_HEIGHT - 1
        draw.line((0, sep_y, width - 1, sep_y), fill=SEPARATOR_COLOR)

        sample = 0
        for f in frames:
            length = f.duration_units * tu

            if not f.is_pause():
                y = top + note_row(settings.sample_rate / f.waveform.period)

                x0 = sample // samples_per_pixel
                x_release = (sample + length * (f.adsr_release_start + 1) // tu) // samples_per_pixel
                x1 = max(x0, (sample + length) // samples_per_pixel - 1)

                draw.rectangle((x0, y, x1, y + NOTE_HEIGHT - 1), fill=RELEASE_COLOR)
                draw.rectangle((x0, y, max(x0, x_release - 1), y + NOTE_HEIGHT - 1), fill=NOTE_COLOR)

            sample += length

    return image


def save_piano_roll(frame_map: FrameMap, settings: SynthSettings, filename: Filename) -> None:
    image: Final = draw_piano_roll(frame_map, settings)
    image.save(filename, "PNG")
