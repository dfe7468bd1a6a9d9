"""
Motion Correction Options Configuration Module
----------------------------------------------

Options for the chunked motion correction pipeline using Pydantic v2 for
validation and IO. Options are grouped like the configuration surface they
are addressed by (``General.correctDrift``, ``Export.OutputDataType``, ...);
every field accepts both its alias and its Python name.
"""
from __future__ import annotations

import json
import sys
import warnings
from datetime import date
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pymotioncorr.errors import ConfigurationError, IOFailure, OptionsMismatchWarning


class GeneralOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="forbid")

    frames_per_part: int = Field(500, ge=1, alias="framesPerPart", description="Frames per chunk")
    correct_drift: bool = Field(True, alias="correctDrift", description="Align chunk means to the session reference")
    update_reference: bool = Field(False, alias="updateReference",
                                   description="Propagate the drift into the reference of later chunks")
    correct_line_offsets: bool = Field(True, alias="correctLineOffsets",
                                       description="Fix bidirectional scan-line offsets")
    drift_max_shift: float = Field(20.0, gt=0, alias="driftMaxShift", description="Drift sanity bound in pixels")
    drift_upsample_factor: int = Field(50, ge=1, alias="driftUpsampleFactor",
                                       description="Subpixel upsampling of the drift estimate")


class ExportOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="forbid")

    output_data_type: str = Field("same", alias="OutputDataType",
                                  description="Sample type of the corrected stack, 'same' keeps the source type")
    save_average_projection: bool = Field(True, alias="saveAverageProjection")
    save_maximum_projection: bool = Field(True, alias="saveMaximumProjection")
    recast_upper_percentile: Optional[float] = Field(
        None, gt=0, le=100, alias="recastUpperPercentile",
        description="Use this percentile of the upper-tail statistic as recast maximum instead of the raw maximum",
    )

    @field_validator("output_data_type")
    @classmethod
    def _check_dtype(cls, v: str) -> str:
        v = str(v).strip()
        if v.lower() == "same":
            return "same"
        try:
            return np.dtype(v).name
        except TypeError as e:
            raise ValueError(f"Unknown output data type '{v}'") from e


class RegistrationOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="forbid")

    toolbox: str = Field("rigid", description="Name of the registration backend")
    backend_params: Dict[str, Any] = Field(default_factory=dict, alias="backendParams",
                                           description="Keyword arguments for the backend factory")


class MCOptions(BaseModel):
    """Options of a motion correction run."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="forbid")

    output_path: Path = Field(Path("results"), description="Output directory")
    verbose: bool = Field(False, description="Verbose logging")

    general: GeneralOptions = Field(default_factory=GeneralOptions, alias="General")
    export: ExportOptions = Field(default_factory=ExportOptions, alias="Export")
    registration: RegistrationOptions = Field(default_factory=RegistrationOptions, alias="Registration")

    def output_dtype(self, source_dtype) -> np.dtype:
        """Resolve ``Export.OutputDataType`` against the source sample type."""
        if self.export.output_data_type == "same":
            return np.dtype(source_dtype)
        return np.dtype(self.export.output_data_type)

    def to_json_dict(self) -> dict:
        """Alias-keyed, JSON-ready dict of all options."""
        return self.model_dump(mode="json", by_alias=True)

    def save_options(self, filepath: Optional[Union[str, Path]] = None) -> None:
        """Save options to JSON with a dated header line."""
        path = Path(filepath) if filepath else self.output_path / "options.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                f.write(f"Motion correction options {date.today().isoformat()}\n\n")
                json.dump(self.to_json_dict(), f, indent=2)
        except OSError as e:
            raise IOFailure(f"Failed writing options to {path}: {e}") from e

        if self.verbose:
            print(f"Options saved to {path}")

    @classmethod
    def load_options(cls, filepath: Union[str, Path]) -> "MCOptions":
        """Load options saved by ``save_options`` (header lines are skipped)."""
        p = Path(filepath)

        with p.open("r", encoding="utf-8") as f:
            lines = f.readlines()

        json_start = 0
        for i, line in enumerate(lines):
            if line.strip().startswith("{"):
                json_start = i
                break

        data = json.loads("".join(lines[json_start:]))
        return cls(**data)

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> "MCOptions":
        p = Path(path)
        if sys.version_info >= (3, 11):
            import tomllib

            with open(p, "rb") as f:
                data = tomllib.load(f)
        else:
            try:
                import tomli
            except ImportError as exc:
                raise ImportError(
                    "TOML support requires 'tomli' for Python < 3.11."
                ) from exc
            with open(p, "rb") as f:
                data = tomli.load(f)

        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MCOptions":
        try:
            import yaml
        except ImportError as exc:
            raise ImportError(
                "YAML support requires 'pyyaml'. Install with: pip install pyyaml"
            ) from exc

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MCOptions":
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix == ".toml":
            return cls.from_toml(p)
        if suffix in {".yaml", ".yml"}:
            return cls.from_yaml(p)
        if suffix == ".json":
            return cls.load_options(p)
        raise ConfigurationError(
            f"Unsupported config file format: {suffix}. Use .toml, .yaml, .yml or .json."
        )

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "MCOptions":
        """
        Return a copy with dotted-key overrides applied.

        Keys may use aliases or field names, e.g. ``"Export.OutputDataType"``
        or ``"general.frames_per_part"``.
        """
        data = self.to_json_dict()
        for key, value in (overrides or {}).items():
            target = data
            parts = key.split(".")
            model = type(self)
            for i, part in enumerate(parts):
                if model is None:
                    # Inside a free-form dict such as Registration.backendParams
                    alias = part
                else:
                    name = _resolve_key(model, part)
                    if name is None:
                        raise ConfigurationError(f"Unknown option '{key}'")
                    field_info = model.model_fields[name]
                    alias = field_info.alias or name
                    model = field_info.annotation

                if i == len(parts) - 1:
                    target[alias] = value
                    break

                if not (isinstance(model, type) and issubclass(model, BaseModel)):
                    if not isinstance(target.get(alias), dict):
                        raise ConfigurationError(f"Option '{'.'.join(parts[:i + 1])}' has no sub-options")
                    model = None
                target = target.setdefault(alias, {})
        try:
            return type(self)(**data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid option override: {e}") from e

    def __repr__(self) -> str:
        return (f"MCOptions(toolbox={self.registration.toolbox}, "
                f"frames_per_part={self.general.frames_per_part}, "
                f"output_data_type={self.export.output_data_type})")


def _resolve_key(model, key: str) -> Optional[str]:
    """Field name of ``model`` addressed by ``key`` (name or alias, case-insensitive)."""
    for name, info in model.model_fields.items():
        if key == name or key == info.alias:
            return name
    lowered = key.lower()
    for name, info in model.model_fields.items():
        if lowered == name.lower() or (info.alias and lowered == info.alias.lower()):
            return name
    return None


def _comparable(options: MCOptions) -> dict:
    data = options.to_json_dict()
    # Where results go and how chatty a run is do not change results
    data.pop("output_path", None)
    data.pop("verbose", None)
    return data


def resolve_persisted_options(options: MCOptions, filepath: Union[str, Path]) -> MCOptions:
    """
    Freeze options on the first run and reuse them on reruns.

    On the first run ``options`` are written to ``filepath``. If the file
    exists, the persisted options are loaded; when they differ from
    ``options`` an ``OptionsMismatchWarning`` is emitted and the persisted
    options are returned.
    """
    path = Path(filepath)
    if not path.exists():
        options.save_options(path)
        return options

    persisted = MCOptions.load_options(path)
    if _comparable(persisted) != _comparable(options):
        warnings.warn(
            f"Options differ from those of the previous run in {path.parent}; "
            "continuing with the persisted options",
            OptionsMismatchWarning,
            stacklevel=2,
        )
    # Keep the current run's location and verbosity
    return persisted.model_copy(update={"output_path": options.output_path, "verbose": options.verbose})
