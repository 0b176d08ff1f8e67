# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import re
import math
from dataclasses import dataclass, field
from enum import Enum, auto, unique

from .errors import MultilineError
from .frames import Frame, FrameMap, ChannelTime, MAX_TIME_SCALE
from .json_formats import SynthSettings, DEFAULT_SYNTH_SETTINGS
from .voice import setup_waveform

from typing import Callable, Final, Generator, NamedTuple, NoReturn, Optional, TextIO, TypeAlias


ARTICULATION_STACCATO: Final = 2.5 / 4.0
ARTICULATION_NORMAL: Final = 7.0 / 8.0
ARTICULATION_LEGATO: Final = 1.0

ARTICULATIONS: Final = {
    "l": ARTICULATION_LEGATO,
    "n": ARTICULATION_NORMAL,
    "s": ARTICULATION_STACCATO,
}

# The `o` command is limited to 0-6, `<` and `>` can reach octave 9
MAX_SET_OCTAVE: Final = 6
MAX_OCTAVE: Final = 9

MAX_VOLUME: Final = 128
MAX_NOTE_CODE: Final = 84

SEMITONES_PER_OCTAVE: Final = 12

# Note code 33 is a4 (440Hz), note code 0 is the lowest c
REFERENCE_NOTE_CODE: Final = 33
REFERENCE_FREQUENCY: Final = 440.0

WHOLE_NOTE_BEATS: Final = 4
SECONDS_PER_MINUTE: Final = 60.0

DOT_LENGTH_DIVISOR: Final = 1.5

DEFAULT_OCTAVE: Final = 4
DEFAULT_LENGTH: Final = 4
DEFAULT_TEMPO: Final = 120
DEFAULT_VOLUME: Final = 63

FIRST_CHANNEL_ORD: Final = ord("A")

DIGITS: Final = "0123456789"
UINT_REGEX: Final = re.compile(r"[0-9]+")

# Larger numbers are rejected by the command that reads them
MAX_UINT: Final = 0xFFFF
MAX_UINT_DIGITS: Final = 5

NOTE_MAP: Final = {
    "c": 0,
    "d": 2,
    "e": 4,
    "f": 5,
    "g": 7,
    "a": 9,
    "b": 11,
}
NOTE_NAMES: Final = "cdefgab"


ErrorHandler: TypeAlias = Callable[[str, int, int], None]


@dataclass
class MmlError:
    message: str
    line_number: int
    char_start: Optional[int]

    def str(self) -> str:
        if self.char_start:
            return f"{self.line_number}:{self.char_start}: {self.message}"
        else:
            return f"{self.line_number}: {self.message}"


class ErrorList:
    def __init__(self, handler: Optional[ErrorHandler]) -> None:
        self.errors: list[MmlError] = list()
        self._handler: Final = handler

    def add_error(self, message: str, pos: tuple[int, int]) -> None:
        e = MmlError(message, *pos)
        self.errors.append(e)

        if self._handler is not None:
            self._handler(e.message, e.line_number, pos[1])


class CompileError(MultilineError, RuntimeError):
    def __init__(self, errors: list[MmlError]):
        self.errors = errors

    def print_indented(self, fp: TextIO) -> None:
        fp.write("Error compiling MML:")
        for e in self.errors:
            fp.write(f"\n    { e.str() }")

    def __str__(self) -> str:
        return self.string_indented()


def round_half_up(v: float) -> int:
    "Round to the nearest integer, halfway values are rounded away from zero."
    if v < 0:
        return -round_half_up(-v)

    i: Final = math.floor(v)
    if v - i >= 0.5:
        return i + 1
    return i


def freq_from_code(note_code: int) -> int:
    return int(REFERENCE_FREQUENCY * 2 ** ((note_code - REFERENCE_NOTE_CODE) / SEMITONES_PER_OCTAVE))


def freq_from_note(note: str, sharp: bool, octave: int) -> int:
    semitone: Final = NOTE_MAP[note] + int(sharp)
    return freq_from_code(semitone + octave * SEMITONES_PER_OCTAVE)


#
# Duration quantizer
# ==================


@dataclass
class RunningTime:
    seconds: float = 0.0
    time_units: int = 0


def calculate_time_scale(running_time: RunningTime, tempo: int, length: int, dots: int, settings: SynthSettings) -> int:
    """
    Returns the note duration in envelope time units.

    The note is quantized against the channel's running time (and not the previous note) so
    rounding errors do not accumulate and the channels do not skew apart.
    """
    if tempo <= 0:
        raise ValueError("Invalid tempo")
    if length <= 0:
        raise ValueError("Invalid length")

    effective_length = float(length)
    for _ in range(dots):
        effective_length /= DOT_LENGTH_DIVISOR

    if effective_length <= 0.0:
        raise ValueError("Can't pack frame: adsr time_scale")

    seconds: Final = running_time.seconds + SECONDS_PER_MINUTE * WHOLE_NOTE_BEATS / tempo / effective_length
    samples: Final = seconds * settings.sample_rate
    if not math.isfinite(samples):
        raise ValueError("Can't pack frame: adsr time_scale")

    running_time.seconds = seconds

    total_units: Final = round_half_up(samples)
    delta_units: Final = total_units - running_time.time_units
    time_scale: Final = round_half_up(delta_units / settings.time_units_per_envelope)

    running_time.time_units += time_scale * settings.time_units_per_envelope

    return time_scale


#
# Channel state
# =============


@dataclass
class ChannelState:
    octave: int = DEFAULT_OCTAVE
    default_length: int = DEFAULT_LENGTH
    default_length_dot: int = 0
    tempo: int = DEFAULT_TEMPO
    volume: int = DEFAULT_VOLUME
    articulation: float = ARTICULATION_NORMAL

    # Active in the current MML line
    is_active: bool = False

    running_time: RunningTime = field(default_factory=RunningTime)


class CompileContext:
    "All of the mutable state of a single compile."

    def __init__(self, settings: SynthSettings) -> None:
        self.settings: Final = settings
        self.channels: Final[list[ChannelState]] = list()
        self.frame_map: Final = FrameMap()

        self.reset_active_channels()

    def enable_channel(self, channel: int) -> None:
        while channel >= len(self.channels):
            self.channels.append(ChannelState())
            self.frame_map.channels.append(list())

        self.channels[channel].is_active = True

    def disable_channel(self, channel: int) -> None:
        self.channels[channel].is_active = False

    def reset_active_channels(self) -> None:
        "Only channel A is active at the start of a line"
        for c in self.channels:
            c.is_active = False
        self.enable_channel(0)

    def active_channels(self) -> Generator[tuple[int, ChannelState], None, None]:
        for i, c in enumerate(self.channels):
            if c.is_active:
                yield i, c

    def add_frame(self, channel: int, frequency: int, time_scale: int, volume: int, articulation: float, join: bool) -> None:
        frames: Final = self.frame_map.channels[channel]

        if join and not frames:
            raise ValueError("Can't join, no note before")

        try:
            if frequency == 0:
                waveform = setup_waveform(0, 0, self.settings.sample_rate)
            else:
                waveform = setup_waveform(frequency, volume, self.settings.sample_rate)
        except ValueError as e:
            if frequency == 0:
                raise ValueError(f"Can't pack frame: pause ({e})") from None
            else:
                raise ValueError(f"Can't pack frame: waveform ({e})") from None

        if join:
            time_scale += frames[-1].duration_units

        if time_scale < 1 or time_scale > MAX_TIME_SCALE:
            raise ValueError("Can't pack frame: adsr time_scale")

        release_start: Final = round_half_up(self.settings.time_units_per_envelope * articulation) - 1

        if join:
            frame = frames[-1]
            frame.waveform = waveform
            frame.adsr_time_scale_1 = time_scale - 1
            frame.adsr_release_start = release_start
        else:
            frames.append(Frame(waveform, time_scale - 1, release_start))

    def finish(self) -> FrameMap:
        for c in self.channels:
            self.frame_map.channel_times.append(ChannelTime(c.running_time.seconds, c.running_time.time_units))
        return self.frame_map


#
# Scanner
# =======


class Scanner:
    def __init__(self, text: str):
        self.text: Final = text
        self._pos: int = 0

        self.line: int = 1
        # Column of the last character read
        self.column: int = 0

    def at_end(self) -> bool:
        return self._pos >= len(self.text)

    def get_pos(self) -> tuple[int, int]:
        return self.line, self.column

    def peek(self) -> str:
        "Returns the next character or an empty string at the end of the text"
        return self.text[self._pos : self._pos + 1]

    def next_char(self) -> str:
        c: Final = self.text[self._pos]
        self._pos += 1

        if c == "\n":
            self.line += 1
            self.column = 0
        elif c != "\r":
            self.column += 1

        return c

    def skip_to_end_of_line(self) -> None:
        "Skips to (but not past) the next new line"
        end = self.text.find("\n", self._pos)
        if end < 0:
            end = len(self.text)
        self.column += end - self._pos
        self._pos = end

    def parse_optional_uint(self) -> Optional[int]:
        m = UINT_REGEX.match(self.text, self._pos)
        if not m:
            return None

        self.column += m.end() - self._pos
        self._pos = m.end()

        digits: Final = m.group(0).lstrip("0")
        if len(digits) > MAX_UINT_DIGITS:
            return None

        value: Final = int(digits) if digits else 0
        if value > MAX_UINT:
            return None

        return value

    def read_uppercase_run(self) -> str:
        start: Final = self._pos
        while "A" <= self.peek() <= "Z":
            self._pos += 1
        self.column += self._pos - start
        return self.text[start : self._pos]

    def count_dots(self) -> int:
        dots = 0
        while self.peek() == ".":
            self.next_char()
            dots += 1
        return dots


#
# Note modifiers
# ==============


@unique
class NoteEntry(Enum):
    PAUSE = auto()
    NOTE_CODE = auto()
    LETTER = auto()


@unique
class NoteState(Enum):
    AWAITING_MODIFIER = auto()
    HAS_EXPLICIT_LENGTH = auto()
    HAS_NOTE_CODE = auto()


@unique
class NoteToken(Enum):
    SHARP = auto()
    FLAT = auto()
    LENGTH = auto()
    NOTE_CODE = auto()
    DOT = auto()


class Transition(NamedTuple):
    next_state: Optional[NoteState]
    error: Optional[str] = None


# (state, token) pairs that are not in this table end the note
NOTE_TRANSITIONS: Final[dict[tuple[NoteState, NoteToken], Transition]] = {
    (NoteState.AWAITING_MODIFIER, NoteToken.SHARP): Transition(NoteState.AWAITING_MODIFIER),
    (NoteState.AWAITING_MODIFIER, NoteToken.FLAT): Transition(NoteState.AWAITING_MODIFIER),
    (NoteState.AWAITING_MODIFIER, NoteToken.DOT): Transition(NoteState.AWAITING_MODIFIER),
    (NoteState.AWAITING_MODIFIER, NoteToken.LENGTH): Transition(NoteState.HAS_EXPLICIT_LENGTH),
    (NoteState.AWAITING_MODIFIER, NoteToken.NOTE_CODE): Transition(NoteState.HAS_NOTE_CODE),
    (NoteState.HAS_EXPLICIT_LENGTH, NoteToken.SHARP): Transition(NoteState.HAS_EXPLICIT_LENGTH),
    (NoteState.HAS_EXPLICIT_LENGTH, NoteToken.FLAT): Transition(NoteState.HAS_EXPLICIT_LENGTH),
    (NoteState.HAS_EXPLICIT_LENGTH, NoteToken.DOT): Transition(NoteState.HAS_EXPLICIT_LENGTH),
    (NoteState.HAS_EXPLICIT_LENGTH, NoteToken.LENGTH): Transition(None, "Invalid length"),
    (NoteState.HAS_NOTE_CODE, NoteToken.DOT): Transition(NoteState.HAS_NOTE_CODE),
    (NoteState.HAS_NOTE_CODE, NoteToken.NOTE_CODE): Transition(None, "Invalid note code"),
}


def classify_note_token(c: str, entry: NoteEntry) -> Optional[NoteToken]:
    if not c:
        return None
    if c == ".":
        return NoteToken.DOT
    if c in DIGITS:
        if entry == NoteEntry.NOTE_CODE:
            return NoteToken.NOTE_CODE
        else:
            return NoteToken.LENGTH
    if entry == NoteEntry.LETTER:
        if c == "+" or c == "#":
            return NoteToken.SHARP
        if c == "-":
            return NoteToken.FLAT
    return None


@dataclass
class NoteModifiers:
    entry: NoteEntry
    letter: Optional[str]

    sharp: bool = False
    length: Optional[int] = None
    dots: int = 0
    note_code: Optional[int] = None

    def is_pause(self) -> bool:
        return self.entry == NoteEntry.PAUSE or self.note_code == 0


NOTE_ENTRIES: Final = {
    "p": NoteEntry.PAUSE,
    "r": NoteEntry.PAUSE,
    "n": NoteEntry.NOTE_CODE,
    **{n: NoteEntry.LETTER for n in NOTE_NAMES},
}


#
# Parser
# ======


class MmlParser:
    def __init__(self, scanner: Scanner, context: CompileContext, error_list: ErrorList):
        self.scanner: Final = scanner
        self.ctx: Final = context
        self._error_list: Final = error_list

        # Set by `&`, consumed by the next note or pause
        self._join: bool = False

    #
    # Channel selection
    #

    def parse_channel_selector(self, c: str) -> None:
        if self.scanner.column != 1:
            raise ValueError("Misplaced channel selector")

        self.ctx.disable_channel(0)
        for s in c + self.scanner.read_uppercase_run():
            self.ctx.enable_channel(ord(s) - FIRST_CHANNEL_ORD)

    #
    # State-setting commands
    #

    def parse_set_octave(self) -> None:
        d = self.scanner.peek()
        if d and d != "\n":
            self.scanner.next_char()
        if not d or d not in DIGITS:
            raise ValueError("Invalid octave")

        octave: Final = int(d)
        if octave > MAX_SET_OCTAVE:
            raise ValueError("Invalid octave")

        for _i, c in self.ctx.active_channels():
            c.octave = octave

    def parse_set_default_length(self) -> None:
        length: Final = self.scanner.parse_optional_uint()
        if not length:
            raise ValueError("Invalid length")

        dots: Final = self.scanner.count_dots()

        for _i, c in self.ctx.active_channels():
            c.default_length = length
            c.default_length_dot = dots

    def parse_set_tempo(self) -> None:
        tempo: Final = self.scanner.parse_optional_uint()
        if not tempo:
            raise ValueError("Invalid tempo")

        for _i, c in self.ctx.active_channels():
            c.tempo = tempo

    def parse_set_volume(self) -> None:
        volume: Final = self.scanner.parse_optional_uint()
        if volume is None or volume > MAX_VOLUME:
            raise ValueError("Invalid volume")

        for _i, c in self.ctx.active_channels():
            c.volume = volume

    def parse_decrease_octave(self) -> None:
        for _i, c in self.ctx.active_channels():
            if c.octave <= 0:
                raise ValueError("Invalid octave step down")
            c.octave -= 1

    def parse_increase_octave(self) -> None:
        for _i, c in self.ctx.active_channels():
            if c.octave >= MAX_OCTAVE:
                raise ValueError("Invalid octave step up")
            c.octave += 1

    def parse_articulation(self) -> None:
        articulation: Final = ARTICULATIONS.get(self.scanner.peek())
        if articulation is None:
            raise ValueError("Invalid music articulation")
        self.scanner.next_char()

        for _i, c in self.ctx.active_channels():
            c.articulation = articulation

    def parse_join(self) -> None:
        self._join = True

    #
    # Notes and pauses
    #

    def _apply_accidental(self, mods: NoteModifiers, token: NoteToken) -> None:
        assert mods.letter

        if token == NoteToken.FLAT:
            # A flat is the sharp of the previous note name
            mods.letter = NOTE_NAMES[NOTE_NAMES.index(mods.letter) - 1]

        if mods.letter == "e" or mods.letter == "b":
            raise ValueError("Invalid sharp")

        mods.sharp = True
        self.scanner.next_char()

    def _parse_note_modifiers(self, mods: NoteModifiers) -> None:
        state = NoteState.AWAITING_MODIFIER

        while (token := classify_note_token(self.scanner.peek(), mods.entry)) is not None:
            t = NOTE_TRANSITIONS.get((state, token))
            if t is None:
                break
            if t.error:
                raise ValueError(t.error)

            if token == NoteToken.SHARP or token == NoteToken.FLAT:
                self._apply_accidental(mods, token)

            elif token == NoteToken.LENGTH:
                length = self.scanner.parse_optional_uint()
                if not length:
                    raise ValueError("Invalid length")
                mods.length = length

            elif token == NoteToken.NOTE_CODE:
                note_code = self.scanner.parse_optional_uint()
                if note_code is None or note_code > MAX_NOTE_CODE:
                    raise ValueError("Invalid note code")
                mods.note_code = note_code

            elif token == NoteToken.DOT:
                self.scanner.next_char()
                mods.dots += 1

            assert t.next_state is not None
            state = t.next_state

        if mods.entry == NoteEntry.NOTE_CODE and mods.note_code is None:
            raise ValueError("Invalid note code")

    def parse_note(self, c: str) -> None:
        mods: Final = NoteModifiers(NOTE_ENTRIES[c], c if c in NOTE_MAP else None)
        self._parse_note_modifiers(mods)

        join: Final = self._join
        self._join = False

        for i, channel in self.ctx.active_channels():
            if mods.is_pause():
                frequency = 0
            elif mods.note_code is not None:
                frequency = freq_from_code(mods.note_code)
            else:
                assert mods.letter
                frequency = freq_from_note(mods.letter, mods.sharp, channel.octave)

            if mods.length is not None:
                length = mods.length
                dots = mods.dots
            else:
                length = channel.default_length
                dots = mods.dots if mods.dots else channel.default_length_dot

            time_scale = calculate_time_scale(channel.running_time, channel.tempo, length, dots, self.ctx.settings)

            self.ctx.add_frame(i, frequency, time_scale, channel.volume, channel.articulation, join)

    PARSERS: Final = {
        "o": parse_set_octave,
        "l": parse_set_default_length,
        "t": parse_set_tempo,
        "v": parse_set_volume,
        "<": parse_decrease_octave,
        ">": parse_increase_octave,
        "m": parse_articulation,
        "&": parse_join,
    }

    def _parse_command(self, c: str) -> None:
        if c in NOTE_ENTRIES:
            self.parse_note(c)
        elif "A" <= c <= "Z":
            self.parse_channel_selector(c)
        else:
            p = self.PARSERS.get(c)
            if p is None:
                raise ValueError("Unknown command")
            p(self)

    def parse_mml(self) -> None:
        while not self.scanner.at_end():
            c = self.scanner.next_char()

            if c == "\n":
                self.ctx.reset_active_channels()
            elif c <= " " or c == "|":
                # Skip blanks and bar lines
                pass
            elif c == "#" or c == ";":
                self.scanner.skip_to_end_of_line()
            else:
                try:
                    self._parse_command(c)
                except ValueError as e:
                    self._abort(str(e))

        if self._join:
            self._abort("Can't join, no note after")

    def _abort(self, message: str) -> NoReturn:
        self._error_list.add_error(message, self.scanner.get_pos())
        raise CompileError(self._error_list.errors) from None


def compile_mml(mml_text: str, settings: SynthSettings = DEFAULT_SYNTH_SETTINGS, error_handler: Optional[ErrorHandler] = None) -> FrameMap:
    """
    Compile MML text into a frame map.

    The first error is passed to `error_handler` (if set) and aborts the compile with a `CompileError`.
    """
    context: Final = CompileContext(settings)
    error_list: Final = ErrorList(error_handler)

    parser: Final = MmlParser(Scanner(mml_text), context, error_list)
    parser.parse_mml()

    return context.finish()


class MmlCompiler:
    def __init__(self, settings: SynthSettings = DEFAULT_SYNTH_SETTINGS) -> None:
        self.settings: Final = settings
        self._error_handler: Optional[ErrorHandler] = None

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None:
        "Install the error sink used by all subsequent `compile()` calls"
        self._error_handler = handler

    def compile(self, mml_text: str) -> FrameMap:
        return compile_mml(mml_text, self.settings, self._error_handler)
