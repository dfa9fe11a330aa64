"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., SPIN → spin, CAMERA_R → camera_r).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, etc.
Nested section overrides are passed through as dictionaries and checked
when the merged result is validated as an InternalConfig.
"""

from typing import Literal, Optional, Any
from pydantic import Field, field_validator
from kerrlight.schemas.base import KerrlightBaseModel


# Flat field name -> (section, key) in InternalConfig
_FLAT_FIELDS = {
    "num_threads": ("runtime", "num_threads"),
    "simulation_file": ("simulation", "file"),
    "camera_r": ("camera", "r"),
    "camera_th": ("camera", "th"),
    "camera_ph": ("camera", "ph"),
    "camera_width": ("camera", "width"),
    "camera_type": ("camera", "type"),
    "resolution": ("camera", "resolution"),
    "frequency": ("image", "frequency"),
    "polarization": ("image", "polarization"),
    "cut_z_turnings": ("image", "cut_z_turnings"),
    "flat": ("ray", "flat"),
    "max_steps": ("ray", "max_steps"),
    "adaptive_max_level": ("adaptive", "max_level"),
    "adaptive_block_size": ("adaptive", "block_size"),
    "fallback_nan": ("fallback", "nan"),
    "slow_light_on": ("slow_light", "on"),
    "output_dir": ("output", "directory"),
}

_SECTIONS = (
    "runtime", "checkpoint", "formula", "simulation", "plasma", "slow_light",
    "fallback", "camera", "ray", "image", "adaptive", "output", "logging",
)


class UserConfig(KerrlightBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            MODEL_TYPE="formula",
            SPIN=0.5,
            RESOLUTION=128,
            camera={"th": 1.3, "width": 30},
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level model selection
    model_type: Optional[Literal["formula", "simulation"]] = Field(None, alias="MODEL_TYPE")
    spin: Optional[float] = Field(None, alias="SPIN")
    num_threads: Optional[int] = Field(None, alias="NUM_THREADS")
    simulation_file: Optional[str] = Field(None, alias="SIMULATION_FILE")

    # Camera settings (flat aliases)
    camera_r: Optional[float] = Field(None, alias="CAMERA_R")
    camera_th: Optional[float] = Field(None, alias="CAMERA_TH")
    camera_ph: Optional[float] = Field(None, alias="CAMERA_PH")
    camera_width: Optional[float] = Field(None, alias="CAMERA_WIDTH")
    camera_type: Optional[str] = Field(None, alias="CAMERA_TYPE")
    resolution: Optional[int] = Field(None, alias="RESOLUTION")

    # Image settings (flat aliases)
    frequency: Optional[float] = Field(None, alias="FREQUENCY")
    polarization: Optional[bool] = Field(None, alias="POLARIZATION")
    cut_z_turnings: Optional[int] = Field(None, alias="CUT_Z_TURNINGS")

    # Ray settings (flat aliases)
    flat: Optional[bool] = Field(None, alias="FLAT")
    max_steps: Optional[int] = Field(None, alias="MAX_STEPS")

    # Refinement and fallback (flat aliases)
    adaptive_max_level: Optional[int] = Field(None, alias="ADAPTIVE_MAX_LEVEL")
    adaptive_block_size: Optional[int] = Field(None, alias="ADAPTIVE_BLOCK_SIZE")
    fallback_nan: Optional[bool] = Field(None, alias="FALLBACK_NAN")
    slow_light_on: Optional[bool] = Field(None, alias="SLOW_LIGHT")
    output_dir: Optional[str] = Field(None, alias="OUTPUT_DIR")

    # Nested overrides (advanced users)
    runtime: Optional[dict[str, Any]] = None
    checkpoint: Optional[dict[str, Any]] = None
    formula: Optional[dict[str, Any]] = None
    simulation: Optional[dict[str, Any]] = None
    plasma: Optional[dict[str, Any]] = None
    slow_light: Optional[dict[str, Any]] = None
    fallback: Optional[dict[str, Any]] = None
    camera: Optional[dict[str, Any]] = None
    ray: Optional[dict[str, Any]] = None
    image: Optional[dict[str, Any]] = None
    adaptive: Optional[dict[str, Any]] = None
    output: Optional[dict[str, Any]] = None
    logging: Optional[dict[str, Any]] = None

    model_config = KerrlightBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("spin", "camera_r", "camera_th", "camera_ph", "camera_width", "frequency",
                     mode="before")
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("model_type", "camera_type", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Normalize option names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator(
        "runtime", "checkpoint", "formula", "simulation", "plasma", "slow_light",
        "fallback", "camera", "ray", "image", "adaptive", "output", "logging",
        mode="before",
    )
    @classmethod
    def normalize_section_keys(cls, v):
        """Accept upper-case keys inside nested sections."""
        if isinstance(v, dict):
            return {str(key).lower().strip(): value for key, value in v.items()}
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Flat aliases are applied first; explicit nested sections win over them.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides: dict = {}

        if self.model_type is not None:
            overrides["model_type"] = self.model_type

        # Spin goes to the chosen model, or to both when none is chosen
        if self.spin is not None:
            if self.model_type in (None, "formula"):
                overrides.setdefault("formula", {})["spin"] = self.spin
            if self.model_type in (None, "simulation"):
                overrides.setdefault("simulation", {})["a"] = self.spin

        for name, (section, key) in _FLAT_FIELDS.items():
            value = getattr(self, name)
            if value is not None:
                overrides.setdefault(section, {})[key] = value

        for section in _SECTIONS:
            nested = getattr(self, section)
            if nested:
                overrides.setdefault(section, {}).update(nested)

        return overrides
