# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import pytest

from polysynth_mml.json_formats import SynthSettings, DEFAULT_SYNTH_SETTINGS
from polysynth_mml.mml_compiler import (
    CompileError,
    MmlCompiler,
    compile_mml,
    freq_from_code,
    freq_from_note,
    round_half_up,
)
from polysynth_mml.voice import WaveformMode


SAMPLE_RATE = DEFAULT_SYNTH_SETTINGS.sample_rate
TIME_UNITS = DEFAULT_SYNTH_SETTINGS.time_units_per_envelope

HIGH_SAMPLE_RATE = SynthSettings(sample_rate=96000, time_units_per_envelope=256)


def durations(mml: str, channel: int = 0) -> list[int]:
    return [f.duration_units for f in compile_mml(mml).channels[channel]]


def compile_error(mml: str, settings: SynthSettings = DEFAULT_SYNTH_SETTINGS) -> tuple[str, int, int]:
    calls = list()

    with pytest.raises(CompileError) as e:
        compile_mml(mml, settings, lambda msg, line, column: calls.append((msg, line, column)))

    assert len(calls) == 1
    assert len(e.value.errors) == 1
    assert e.value.errors[0].message == calls[0][0]

    return calls[0]


def test_cde() -> None:
    fm = compile_mml("cde")

    assert fm.channel_count == 1

    frames = fm.channels[0]
    assert len(frames) == 3

    # c, d and e at octave 4 (note codes 48, 50, 52)
    assert freq_from_note("c", False, 4) == freq_from_code(48) == 1046
    assert freq_from_note("d", False, 4) == freq_from_code(50) == 1174
    assert freq_from_note("e", False, 4) == freq_from_code(52) == 1318

    assert [f.waveform.period for f in frames] == [SAMPLE_RATE // 1046, SAMPLE_RATE // 1174, SAMPLE_RATE // 1318]
    assert frames[0].waveform.period > frames[1].waveform.period > frames[2].waveform.period

    for f in frames:
        assert f.waveform.mode == WaveformMode.SQUARE
        assert f.waveform.amplitude == 63
        # quarter note at 120bpm = 8000 samples = 31.25 time units
        assert f.duration_units in (31, 32)

    # Rounding error is carried to the next note
    assert [f.duration_units for f in frames] == [31, 32, 31]


def test_reference_pitch() -> None:
    assert freq_from_code(33) == 440
    assert freq_from_code(45) == 880
    assert freq_from_note("a", False, 2) == 440
    assert freq_from_code(0) == 65


def _note_seconds(tempo: int, length: int, dots: int) -> float:
    effective_length = float(length)
    for _ in range(dots):
        effective_length /= 1.5
    return 240 / tempo / effective_length


def test_quantization_does_not_drift() -> None:
    notes = [(97, 3, 0), (97, 8, 1), (97, 16, 0), (97, 5, 2), (97, 7, 0), (97, 12, 1)] * 20

    mml = "t97 " + " ".join(f"c{length}" + "." * dots for _t, length, dots in notes)
    frames = compile_mml(mml).channels[0]

    assert len(frames) == len(notes)

    total_seconds = 0.0
    total_units = 0
    for n, f in zip(notes, frames):
        total_seconds += _note_seconds(*n)
        total_units += f.duration_units

        expected_samples = round_half_up(total_seconds * SAMPLE_RATE)
        assert abs(total_units * TIME_UNITS - expected_samples) <= TIME_UNITS // 2


def test_channel_times() -> None:
    fm = compile_mml("c4 c4 c4")
    assert fm.channel_times[0].seconds == pytest.approx(1.5)
    assert fm.channel_times[0].samples == 94 * TIME_UNITS
    assert fm.stats_string() == f"Channel A: 1.500000s ({94 * TIME_UNITS} samples)"


def test_join() -> None:
    joined = compile_mml("c4&c8").channels[0]
    assert len(joined) == 1

    separate = durations("c4c8")
    assert separate == [31, 16]
    assert joined[0].duration_units == sum(separate) == 47


def test_join_after_rest_and_whitespace() -> None:
    frames = compile_mml("r4 & c8").channels[0]
    assert len(frames) == 1
    assert frames[0].duration_units == 47
    # The joined frame takes the waveform of the last note
    assert frames[0].waveform.mode == WaveformMode.SQUARE


def test_join_without_previous_note() -> None:
    assert compile_error("&c") == ("Can't join, no note before", 1, 2)


def test_join_is_per_channel() -> None:
    assert compile_error("c\nB &c")[0] == "Can't join, no note before"


def test_join_continues_on_the_next_line() -> None:
    frames = compile_mml("c4&\nc8").channels[0]
    assert len(frames) == 1
    assert frames[0].duration_units == 47


def test_join_without_following_note() -> None:
    assert compile_error("c&") == ("Can't join, no note after", 1, 2)
    assert compile_error("c& ; tie")[0] == "Can't join, no note after"
    assert compile_error("c&\n") == ("Can't join, no note after", 2, 0)


def test_channel_selector_only_applies_to_its_line() -> None:
    fm = compile_mml("AB o3\nc")

    assert fm.channel_count == 2
    assert fm.channels[1] == []

    frames = fm.channels[0]
    assert len(frames) == 1
    # Channel A was set to octave 3 by the `AB` line
    assert frames[0].waveform.period == SAMPLE_RATE // freq_from_note("c", False, 3)


def test_channel_selector_state_persists() -> None:
    fm = compile_mml("B o2 l8\nB c\nc")

    assert [f.waveform.period for f in fm.channels[1]] == [SAMPLE_RATE // freq_from_note("c", False, 2)]
    assert fm.channels[1][0].duration_units == 16

    assert [f.waveform.period for f in fm.channels[0]] == [SAMPLE_RATE // freq_from_note("c", False, 4)]
    assert fm.channels[0][0].duration_units == 31


def test_multiple_channels() -> None:
    fm = compile_mml("ABC l8 cde")
    assert fm.channel_count == 3
    for frames in fm.channels:
        assert [f.duration_units for f in frames] == [16, 15, 16]


def test_channels_are_timed_independently() -> None:
    fm = compile_mml("A t60 c\nB c")
    assert [f.duration_units for f in fm.channels[0]] == [63]
    assert [f.duration_units for f in fm.channels[1]] == [31]


def test_channel_table_grows_to_highest_channel() -> None:
    fm = compile_mml("C c")
    assert fm.channel_count == 3
    assert fm.channels[0] == []
    assert fm.channels[1] == []
    assert len(fm.channels[2]) == 1


def test_invalid_octave() -> None:
    assert compile_error("o9") == ("Invalid octave", 1, 2)
    assert compile_error("o7")[0] == "Invalid octave"
    assert compile_error("c4 ox") == ("Invalid octave", 1, 5)
    assert compile_error("ox") == ("Invalid octave", 1, 2)
    assert compile_error("o") == ("Invalid octave", 1, 1)
    assert compile_error("o\nc") == ("Invalid octave", 1, 1)


def test_no_frames_after_error() -> None:
    compiler = MmlCompiler()
    errors = list()
    compiler.set_error_handler(lambda msg, line, column: errors.append((msg, line, column)))

    with pytest.raises(CompileError) as e:
        compiler.compile("c d e o9 f g")

    assert errors == [("Invalid octave", 1, 8)]
    assert "1:8: Invalid octave" in str(e.value)


def test_octave_range() -> None:
    compile_mml("o6")
    compile_mml("o0")

    # `>` can raise the octave past the `o` limit
    compile_mml("o6>>>")
    assert compile_error("o6>>>>") == ("Invalid octave step up", 1, 6)

    compile_mml("o1<")
    assert compile_error("o0<") == ("Invalid octave step down", 1, 3)


def test_note_at_octave_nine() -> None:
    fm = compile_mml("o6>>>c", HIGH_SAMPLE_RATE)
    f = fm.channels[0][0]
    assert f.waveform.period == 96000 // freq_from_code(108)
    assert f.waveform.period == 2

    # Above the nyquist frequency
    assert compile_error("o6>>>c")[0].startswith("Can't pack frame: waveform")


def test_volume() -> None:
    fm = compile_mml("v128 c v0 d v100 e")
    assert [f.waveform.amplitude for f in fm.channels[0]] == [128, 0, 100]

    assert compile_error("v129") == ("Invalid volume", 1, 4)
    assert compile_error("v")[0] == "Invalid volume"


def test_tempo() -> None:
    assert durations("t60 c") == [63]
    assert durations("t240 c") == [16]

    assert compile_error("t0")[0] == "Invalid tempo"
    assert compile_error("t")[0] == "Invalid tempo"


def test_default_length() -> None:
    assert durations("l8 c") == [16]
    assert durations("l4. c") == [47]
    # Explicit length overrides the default dots
    assert durations("l4. c8") == [16]
    # Explicit dots override the default dots
    assert durations("l4. c..") == [70]

    assert compile_error("l")[0] == "Invalid length"
    assert compile_error("l0")[0] == "Invalid length"


def test_note_length() -> None:
    assert durations("c8") == [16]
    assert durations("c4.") == [47]
    assert durations("c1") == [125]

    assert compile_error("c4.8") == ("Invalid length", 1, 3)
    assert compile_error("c0")[0] == "Invalid length"


@pytest.mark.parametrize(
    "mml, expected",
    [
        ("c+", ("c", True)),
        ("c#", ("c", True)),
        ("d-", ("c", True)),
        ("f+", ("f", True)),
        ("g-", ("f", True)),
        ("a-", ("g", True)),
        ("d-+", ("c", True)),
        ("c4+", ("c", True)),
    ],
)
def test_accidentals(mml: str, expected: tuple[str, bool]) -> None:
    f = compile_mml(mml).channels[0][0]
    assert f.waveform.period == SAMPLE_RATE // freq_from_note(*expected, 4)


@pytest.mark.parametrize("mml", ["e+", "b+", "b#", "c-", "f-", "d--"])
def test_invalid_sharp(mml: str) -> None:
    assert compile_error(mml)[0] == "Invalid sharp"


def test_accidentals_only_apply_to_letters() -> None:
    assert compile_error("r+")[0] == "Unknown command"
    assert compile_error("n40-")[0] == "Unknown command"


def test_note_code() -> None:
    fm = compile_mml("n33 n45.", HIGH_SAMPLE_RATE)
    frames = fm.channels[0]
    assert [f.waveform.period for f in frames] == [96000 // 440, 96000 // 880]
    assert [f.duration_units for f in frames] == [188, 281]

    assert compile_mml("n84", HIGH_SAMPLE_RATE).channels[0][0].waveform.period == 96000 // freq_from_code(84)


def test_note_code_zero_is_a_pause() -> None:
    f = compile_mml("n0").channels[0][0]
    assert f.is_pause()
    assert f.waveform.mode == WaveformMode.DC
    assert f.duration_units == 31


def test_invalid_note_code() -> None:
    assert compile_error("n85")[0] == "Invalid note code"
    assert compile_error("n")[0] == "Invalid note code"
    assert compile_error("n12.3")[0] == "Invalid note code"

    # note code 84 is above the nyquist frequency at 16000Hz
    assert compile_error("n84")[0].startswith("Can't pack frame: waveform")


def test_pause() -> None:
    frames = compile_mml("v100 r p8").channels[0]
    assert [f.duration_units for f in frames] == [31, 16]
    for f in frames:
        assert f.is_pause()
        assert f.waveform.amplitude == 0


def test_articulation() -> None:
    frames = compile_mml("c ml c ms c mn c").channels[0]
    assert [f.adsr_release_start for f in frames] == [223, 255, 159, 223]

    assert compile_error("mx") == ("Invalid music articulation", 1, 1)
    assert compile_error("m")[0] == "Invalid music articulation"


def test_articulation_rounds_half_up() -> None:
    settings = SynthSettings(sample_rate=16000, time_units_per_envelope=20)
    frames = compile_mml("ms c", settings).channels[0]
    assert frames[0].adsr_release_start == 12


def test_duration_overflow() -> None:
    compile_mml("t1 c1&c1&c1&c1")
    assert compile_error("t1 c1&c1&c1&c1&c1")[0] == "Can't pack frame: adsr time_scale"


def test_duration_too_short() -> None:
    assert compile_error("t960 c64")[0] == "Can't pack frame: adsr time_scale"


@pytest.mark.parametrize(
    "mml, expected",
    [
        ("c" + "9" * 400, ("Invalid length", 1, 401)),
        ("l" + "9" * 400 + " c", ("Invalid length", 1, 401)),
        ("t" + "9" * 400 + " c", ("Invalid tempo", 1, 401)),
        ("v" + "9" * 5000, ("Invalid volume", 1, 5001)),
        ("n" + "9" * 5000, ("Invalid note code", 1, 5001)),
        ("c65536", ("Invalid length", 1, 6)),
        ("t65536 c", ("Invalid tempo", 1, 6)),
    ],
)
def test_numbers_too_large(mml: str, expected: tuple[str, int, int]) -> None:
    assert compile_error(mml) == expected


def test_largest_numbers_are_too_short() -> None:
    assert compile_error("c65535")[0] == "Can't pack frame: adsr time_scale"
    assert compile_error("t65535 c")[0] == "Can't pack frame: adsr time_scale"


def test_leading_zeros() -> None:
    assert durations("c0004 l0008 d t00120 e") == [31, 16, 16]
    assert compile_error("c" + "0" * 5000)[0] == "Invalid length"


def test_too_many_dots() -> None:
    assert compile_error("c" + "." * 1000)[0] == "Can't pack frame: adsr time_scale"
    assert compile_error("c" + "." * 2000)[0] == "Can't pack frame: adsr time_scale"


def test_round_half_up() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -3
    assert round_half_up(1.4999999999999998) == 1
    assert round_half_up(0.49999999999999994) == 0
    assert round_half_up(-0.49999999999999994) == 0


def test_blanks_bars_and_comments() -> None:
    assert len(compile_mml("c | d |\te").channels[0]) == 3
    assert len(compile_mml("c ; d e\nf").channels[0]) == 2
    assert len(compile_mml("# comment\nc # d").channels[0]) == 1
    assert len(compile_mml("c d;").channels[0]) == 2


def test_comment_ends_channel_selection() -> None:
    fm = compile_mml("B c ; B\nc")
    assert len(fm.channels[0]) == 1
    assert len(fm.channels[1]) == 1


def test_error_positions() -> None:
    assert compile_error("x") == ("Unknown command", 1, 1)
    assert compile_error("c\n  cx") == ("Unknown command", 2, 4)
    # Carriage returns do not advance the column
    assert compile_error("c\r\nc\rx") == ("Unknown command", 2, 2)


def test_misplaced_channel_selector() -> None:
    assert compile_error(" A c") == ("Misplaced channel selector", 1, 2)
    assert compile_error("cA") == ("Misplaced channel selector", 1, 2)
    assert compile_error("AB cC") == ("Misplaced channel selector", 1, 5)


def test_compiler_error_handler_is_replaceable() -> None:
    compiler = MmlCompiler()

    first = list()
    second = list()

    compiler.set_error_handler(lambda *args: first.append(args))
    with pytest.raises(CompileError):
        compiler.compile("x")

    compiler.set_error_handler(lambda *args: second.append(args))
    with pytest.raises(CompileError):
        compiler.compile("c\no8")

    assert first == [("Unknown command", 1, 1)]
    assert second == [("Invalid octave", 2, 2)]


def test_compile_without_error_handler() -> None:
    with pytest.raises(CompileError) as e:
        compile_mml("c v200")

    assert [(err.message, err.line_number, err.char_start) for err in e.value.errors] == [("Invalid volume", 1, 6)]


def test_compiles_are_independent() -> None:
    compiler = MmlCompiler()
    a = compiler.compile("l8 o2 cde")
    b = compiler.compile("c")

    assert len(a.channels[0]) == 3
    assert [f.duration_units for f in b.channels[0]] == [31]
    assert b.channels[0][0].waveform.period == SAMPLE_RATE // freq_from_note("c", False, 4)


def test_release() -> None:
    fm = compile_mml("AB cde")
    fm.release()
    assert fm.channel_count == 0
    assert fm.channel_times == []


def test_empty_input() -> None:
    fm = compile_mml("")
    assert fm.channel_count == 1
    assert fm.channels[0] == []
