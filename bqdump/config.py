import os
from dataclasses import dataclass, fields
from typing import Mapping

from bqdump.errors import ValidationError

MIB = 1024 * 1024


@dataclass
class DumpConfig:
    project_id: str | None = None
    # region / multi-region for the bucket and extract job; None = dataset location
    location: str | None = None
    work_dir: str = "."
    object_workers: int = 8
    slices: int = 8
    slice_threshold: int = 150 * MIB
    decompress_workers: int = 8
    field_delimiter: str = ","

    def validate(self) -> "DumpConfig":
        for name in ("object_workers", "slices", "decompress_workers"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be >= 1", context={name: getattr(self, name)})
        if self.slice_threshold < 0:
            raise ValidationError("slice_threshold must be >= 0", context={"slice_threshold": self.slice_threshold})
        if not self.field_delimiter:
            raise ValidationError("field_delimiter must not be empty")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DumpConfig":
        """
        Build a config from BQDUMP_* environment variables.
        Unset variables keep the dataclass defaults.
        """
        env = os.environ if environ is None else environ
        cfg = cls()
        cfg.project_id = env.get("BQDUMP_PROJECT_ID") or env.get("GOOGLE_CLOUD_PROJECT") or None
        cfg.location = env.get("BQDUMP_LOCATION") or None
        cfg.work_dir = env.get("BQDUMP_WORK_DIR", cfg.work_dir)
        cfg.field_delimiter = env.get("BQDUMP_FIELD_DELIMITER", cfg.field_delimiter)

        for name, var in (
            ("object_workers", "BQDUMP_OBJECT_WORKERS"),
            ("slices", "BQDUMP_SLICES"),
            ("decompress_workers", "BQDUMP_DECOMPRESS_WORKERS"),
        ):
            if env.get(var):
                setattr(cfg, name, _int(var, env[var]))
        if env.get("BQDUMP_SLICE_THRESHOLD_MB"):
            cfg.slice_threshold = _int("BQDUMP_SLICE_THRESHOLD_MB", env["BQDUMP_SLICE_THRESHOLD_MB"]) * MIB
        return cfg

    def override(self, **values) -> "DumpConfig":
        """Return a copy with every non-None value applied."""
        known = {f.name for f in fields(self)}
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for k, v in values.items():
            if k not in known:
                raise TypeError(f"Unknown config field: {k}")
            if v is not None:
                data[k] = v
        return DumpConfig(**data)


def _int(var: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{var} must be an integer", context={var: raw}) from None
