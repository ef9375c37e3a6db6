"""
Pipeline options

The option table follows the INPUT_TYPES convention of processing nodes:
each entry names a type and its default / min / max, and HDRSettings
validates against it.
"""

from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping

from .errors import InvalidConfiguration

# Length of the camera response; one entry per 8-bit intensity level
RESPONSE_LENGTH = 256

SETTINGS_SCHEMA = {
    "iterations": ("INT", {
        "default": 10,
        "min": 1,
        "max": 100,
        "tooltip": "Estimation passes; 5-15 is usually enough"
    }),
    "training_weight": ("FLOAT", {
        "default": 4.0,
        "min": 0.1,
        "max": 50.0,
        "tooltip": "Selectivity of the weight function for mid-tones"
    }),
    "control_point_count": ("INT", {
        "default": 16,
        "min": 4,
        "max": 128,
        "tooltip": "Spline knots used for the final response smoothing"
    }),
    "median_window": ("INT", {
        "default": 7,
        "min": 1,
        "max": 63,
        "tooltip": "Median filter width along the response, must be odd"
    }),
    "max_bracket_size": ("INT", {
        "default": 5,
        "min": 2,
        "max": 16,
    }),
    "block_size": ("INT", {
        "default": 16,
        "min": 1,
        "max": 256,
        "tooltip": "Edge length of the tiles holding partial bin sums"
    }),
    "histogram_bins": ("INT", {
        "default": 256,
        "min": 2,
        "max": 65536,
    }),
    "clip_percentile": ("FLOAT", {
        "default": 99.0,
        "min": 50.0,
        "max": 100.0,
        "tooltip": "Share of pixel mass kept below the clip threshold"
    }),
    "shared_memory_bytes": ("INT", {
        "default": 32768,
        "min": 1024,
        "max": 1 << 20,
        "tooltip": "Fast-memory budget that sizes the replicated histograms"
    }),
}

_CAMEL_CASE = {
    "trainingWeight": "training_weight",
    "controlPointCount": "control_point_count",
    "medianWindow": "median_window",
    "maxBracketSize": "max_bracket_size",
    "blockSize": "block_size",
    "histogramBins": "histogram_bins",
    "clipPercentile": "clip_percentile",
    "sharedMemoryBytes": "shared_memory_bytes",
}


@dataclass
class HDRSettings:
    iterations: int = SETTINGS_SCHEMA["iterations"][1]["default"]
    training_weight: float = SETTINGS_SCHEMA["training_weight"][1]["default"]
    control_point_count: int = SETTINGS_SCHEMA["control_point_count"][1]["default"]
    median_window: int = SETTINGS_SCHEMA["median_window"][1]["default"]
    max_bracket_size: int = SETTINGS_SCHEMA["max_bracket_size"][1]["default"]
    block_size: int = SETTINGS_SCHEMA["block_size"][1]["default"]
    histogram_bins: int = SETTINGS_SCHEMA["histogram_bins"][1]["default"]
    clip_percentile: float = SETTINGS_SCHEMA["clip_percentile"][1]["default"]
    shared_memory_bytes: int = SETTINGS_SCHEMA["shared_memory_bytes"][1]["default"]

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check every option against SETTINGS_SCHEMA

        Raises:
            InvalidConfiguration: on a wrong type or out-of-range value
        """
        for field in fields(self):
            kind, options = SETTINGS_SCHEMA[field.name]
            value = getattr(self, field.name)

            if kind == "INT":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise InvalidConfiguration(f"{field.name} must be an integer, got {value!r}")
            else:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise InvalidConfiguration(f"{field.name} must be a number, got {value!r}")
                value = float(value)
                setattr(self, field.name, value)

            if not options["min"] <= value <= options["max"]:
                raise InvalidConfiguration(
                    f"{field.name}={value} outside [{options['min']}, {options['max']}]"
                )

        if self.median_window % 2 == 0:
            raise InvalidConfiguration(f"median_window must be odd, got {self.median_window}")
        if self.control_point_count > RESPONSE_LENGTH:
            raise InvalidConfiguration("control_point_count cannot exceed the response length")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "HDRSettings":
        """Build settings from snake_case or camelCase keys"""
        known = {field.name for field in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = _CAMEL_CASE.get(key, key)
            if name not in known:
                raise InvalidConfiguration(f"Unknown option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
