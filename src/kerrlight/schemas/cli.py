"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: thread count, checkpoint files, output paths, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from kerrlight.schemas.base import KerrlightBaseModel


class CLIConfig(KerrlightBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Notes
    -----
    Naming a checkpoint file with ``geodesic_file``/``sample_file`` does
    not switch saving or loading on; the switches are separate so the same
    file can be written on one run and read on the next.

    Usage
    -----
        cli_cfg = CLIConfig(
            num_threads=8,
            output_dir="/scratch/kerrlight",
            geodesic_save=True,
            geodesic_file="/scratch/kerrlight/geodesics.nc",
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    num_threads: Optional[int] = Field(None, ge=1)
    output_dir: Optional[str] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None
    geodesic_save: Optional[bool] = None
    geodesic_load: Optional[bool] = None
    geodesic_file: Optional[str] = None
    sample_save: Optional[bool] = None
    sample_load: Optional[bool] = None
    sample_file: Optional[str] = None
    save_plot: Optional[bool] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lower-case log levels."""
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.num_threads is not None:
            overrides["runtime"] = {"num_threads": self.num_threads}

        checkpoint_overrides = {}
        for key in ("geodesic_save", "geodesic_load", "geodesic_file",
                    "sample_save", "sample_load", "sample_file"):
            value = getattr(self, key)
            if value is not None:
                checkpoint_overrides[key] = value

        if checkpoint_overrides:
            overrides["checkpoint"] = checkpoint_overrides

        output_overrides = {}
        if self.output_dir is not None:
            output_overrides["directory"] = str(self.output_dir)
        if self.save_plot is not None:
            output_overrides["save_plot"] = self.save_plot

        if output_overrides:
            overrides["output"] = output_overrides

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
