# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:


import json
from typing import Any, Final, NamedTuple, NoReturn, Optional, Type, TypeVar, Union

from .errors import FileError


Filename = str


DEFAULT_SAMPLE_RATE: Final = 16000
MIN_SAMPLE_RATE: Final = 1000
MAX_SAMPLE_RATE: Final = 96000

# The release start of a legato note (`TIME_UNITS_PER_ENVELOPE - 1`) must fit in a byte
DEFAULT_TIME_UNITS_PER_ENVELOPE: Final = 256
MAX_TIME_UNITS_PER_ENVELOPE: Final = 256


class JsonError(FileError):
    pass


class SynthSettings(NamedTuple):
    sample_rate: int
    time_units_per_envelope: int


DEFAULT_SYNTH_SETTINGS: Final = SynthSettings(
    sample_rate=DEFAULT_SAMPLE_RATE,
    time_units_per_envelope=DEFAULT_TIME_UNITS_PER_ENVELOPE,
)


class _Helper:
    """
    A helper class to parse the output of `json.load()` into structured data.

    Tracks the position within the JSON file to improve error messages.
    """

    _T = TypeVar("_T")

    def __init__(self, d: dict[str, Any], *path: str):
        if not isinstance(d, dict):
            raise JsonError("Expected a dict", path)

        self.__dict: Final = d
        self.__path: Final = path

    def _raise_error(self, e: Union[str, Exception], *location: str) -> NoReturn:
        if isinstance(e, Exception):
            e = f"{ type(e).__name__ }: { e }"
        raise JsonError(e, self.__path + location) from None

    def _optional_get(self, key: str, _type: Type[_T]) -> Optional[_T]:
        v = self.__dict.get(key)
        if v is None:
            return None
        # bool is a subclass of int
        if not isinstance(v, _type) or isinstance(v, bool):
            self._raise_error(f"Expected a { _type.__name__ }", key)
        return v

    def get_optional_int_range(self, key: str, default: int, min_value: int, max_value: int) -> int:
        i = self._optional_get(key, int)
        if i is None:
            return default
        if i < min_value or i > max_value:
            self._raise_error(f"Integer out of range ({min_value}-{max_value}): {i}", key)
        return i

    def check_for_unknown_keys(self, known_keys: frozenset[str]) -> None:
        for key in self.__dict:
            if key not in known_keys:
                self._raise_error("Unknown JSON field", key)


class _SynthSettingsHelper(_Helper):
    KEYS: Final = frozenset(("sample_rate", "time_units_per_envelope"))

    def get_synth_settings(self) -> SynthSettings:
        self.check_for_unknown_keys(self.KEYS)

        return SynthSettings(
            sample_rate=self.get_optional_int_range("sample_rate", DEFAULT_SAMPLE_RATE, MIN_SAMPLE_RATE, MAX_SAMPLE_RATE),
            time_units_per_envelope=self.get_optional_int_range(
                "time_units_per_envelope", DEFAULT_TIME_UNITS_PER_ENVELOPE, 1, MAX_TIME_UNITS_PER_ENVELOPE
            ),
        )


def parse_synth_settings(json_input: Any, filename: Filename) -> SynthSettings:
    return _SynthSettingsHelper(json_input, filename).get_synth_settings()


def load_synth_settings(filename: Filename) -> SynthSettings:
    try:
        with open(filename, "r") as fp:
            json_input = json.load(fp)
    except json.JSONDecodeError as e:
        raise JsonError(f"Cannot parse JSON: { e }", (filename,)) from None

    return parse_synth_settings(json_input, filename)


def override_sample_rate(settings: SynthSettings, sample_rate: Optional[int]) -> SynthSettings:
    if sample_rate is None:
        return settings
    if sample_rate < MIN_SAMPLE_RATE or sample_rate > MAX_SAMPLE_RATE:
        raise ValueError(f"Sample rate out of range ({MIN_SAMPLE_RATE}-{MAX_SAMPLE_RATE}): {sample_rate}")
    return settings._replace(sample_rate=sample_rate)
