#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import sys
import argparse
import threading
from typing import Final, Optional, Union

from .ansi_color import AnsiColors
from .errors import print_error
from .frames import frame_map_to_bytes
from .fs_watcher import watch_mml_file
from .json_formats import SynthSettings, DEFAULT_SYNTH_SETTINGS, load_synth_settings, override_sample_rate
from .mml_compiler import CompileError, compile_mml
from .piano_roll import save_piano_roll


__log_lock: Final = threading.Lock()


# Thread safe printing
def __log(s: str, c: str) -> None:
    with __log_lock:
        sys.stdout.write(c)
        sys.stdout.write(s)
        sys.stdout.write(AnsiColors.RESET + "\n")


def log_error(s: str, e: Optional[Union[Exception, str]] = None) -> None:
    with __log_lock:
        print_error(s, e, sys.stdout)


def log_compiler_message(s: str) -> None:
    __log(s, AnsiColors.BRIGHT_CYAN)


def log_fs_watcher(s: str) -> None:
    __log(s, AnsiColors.BRIGHT_BLUE)


def log_success(s: str) -> None:
    __log(s, AnsiColors.GREEN)


def compile_mml_file(mml_filename: str, settings: SynthSettings, output: Optional[str], piano_roll: Optional[str]) -> bool:
    "Returns True if the file compiled successfully"

    try:
        with open(mml_filename, "r") as fp:
            mml_text = fp.read()

        frame_map = compile_mml(mml_text, settings)

        if output:
            with open(output, "wb") as fp:
                fp.write(frame_map_to_bytes(frame_map))

        if piano_roll:
            save_piano_roll(frame_map, settings, piano_roll)

        log_success(f"Compiled { mml_filename }")
        log_compiler_message(frame_map.stats_string())

        frame_map.release()

        return True

    except CompileError as e:
        log_error(f"ERROR: { mml_filename }", e)
    except (OSError, ValueError) as e:
        log_error("ERROR", e)

    return False


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile MML into synthesizer frames")
    parser.add_argument("-o", "--output", required=False, help="binary frame map output")
    parser.add_argument("--settings", required=False, help="synth settings json file")
    parser.add_argument("--sample-rate", type=int, required=False, help="synthesizer sample rate (overrides settings)")
    parser.add_argument("--piano-roll", required=False, help="piano roll PNG output")
    parser.add_argument("--watch", action="store_true", help="recompile the MML file whenever it changes")

    parser.add_argument("mml_file", action="store", help="MML source file")

    args = parser.parse_args()

    return args


def load_settings(args: argparse.Namespace) -> SynthSettings:
    if args.settings:
        settings = load_synth_settings(args.settings)
    else:
        settings = DEFAULT_SYNTH_SETTINGS

    return override_sample_rate(settings, args.sample_rate)


def main() -> None:
    args = parse_arguments()

    try:
        settings = load_settings(args)
    except Exception as e:
        print_error("ERROR", e)
        sys.exit(1)

    if args.watch:
        def compile_file() -> None:
            compile_mml_file(args.mml_file, settings, args.output, args.piano_roll)

        try:
            watch_mml_file(args.mml_file, compile_file, log_fs_watcher, threading.Event())
        except KeyboardInterrupt:
            pass
    else:
        if not compile_mml_file(args.mml_file, settings, args.output, args.piano_roll):
            sys.exit(1)


if __name__ == "__main__":
    main()
