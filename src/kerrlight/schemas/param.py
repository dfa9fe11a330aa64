"""ParamConfig: Expert defaults for kerrlight.

This module defines the complete default configuration. ALL ray-tracing
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

import math
from typing import Literal, Optional
from pydantic import Field, field_validator
from kerrlight.schemas.base import KerrlightBaseModel


# =============================================================================
# Nested Configuration Models
# =============================================================================

class RuntimeConfig(KerrlightBaseModel):
    """Worker pool settings."""
    num_threads: int = Field(1, ge=1, description="Number of worker threads")
    chunk_size: int = Field(64, ge=1, description="Pixels handed to a worker at once")


class CheckpointConfig(KerrlightBaseModel):
    """Geodesic and sample checkpoint switches."""
    geodesic_save: bool = False
    geodesic_load: bool = False
    geodesic_file: Optional[str] = None
    sample_save: bool = False
    sample_load: bool = False
    sample_file: Optional[str] = None


class FormulaConfig(KerrlightBaseModel):
    """Analytic plasma model (code comparison torus)."""
    mass: float = Field(6.06e11, gt=0, description="GM/c^2 in cm")
    spin: float = Field(0.9, ge=-1.0, le=1.0)
    r0: float = Field(10.0, gt=0, description="Radial density scale in GM/c^2")
    h: float = Field(2.0, ge=0, description="Inverse angular thickness")
    l0: float = 1.0
    q: float = 0.5
    nup: float = Field(230.0e9, gt=0, description="Pivot frequency in Hz")
    cn0: float = Field(3.0e-18, ge=0, description="Emission normalization in CGS")
    alpha: float = -2.0
    a: float = Field(3.0e4, ge=0, description="Absorption normalization")
    beta: float = 2.0


class SimulationConfig(KerrlightBaseModel):
    """Simulation-data model settings."""
    file: Optional[str] = Field(None, description="NetCDF file holding the simulation grid")
    a: float = Field(0.9, ge=-1.0, le=1.0)
    coord: Literal["sph_ks", "cart_ks"] = "sph_ks"
    m_msun: float = Field(4.1e6, gt=0, description="Black hole mass in solar masses")
    rho_cgs: float = Field(1.0e-17, gt=0, description="Code density unit in g/cm^3")
    interp: bool = True
    block_interp: bool = False


class PlasmaConfig(KerrlightBaseModel):
    """Electron population settings for the simulation model."""
    mu: float = Field(0.5, gt=0, description="Mean molecular weight")
    ne_ni: float = Field(1.0, gt=0, description="Electron to ion number ratio")
    model: Literal["ti_te_beta", "code_kappa"] = "ti_te_beta"
    rat_low: float = Field(1.0, gt=0)
    rat_high: float = Field(10.0, gt=0)
    power_frac: float = 0.0
    p: float = Field(3.0, gt=2.0)
    gamma_min: float = Field(4.0, ge=1.0)
    gamma_max: float = Field(1000.0, ge=1.0)
    kappa_frac: float = 0.0
    kappa: float = Field(3.5, gt=3.0)
    w: float = Field(0.0, description="Kappa width; non-positive matches thermal temperature")
    sigma_max: float = Field(1.0, gt=0)


class SlowLightConfig(KerrlightBaseModel):
    """Time-dependent sampling along the photon path."""
    on: bool = False
    interp: bool = True
    t_start: float = 0.0
    dt: float = Field(10.0, gt=0)


class FallbackConfig(KerrlightBaseModel):
    """Values used where sampling fails."""
    nan: bool = False
    rho: float = Field(1.0e-8, ge=0)
    pgas: float = Field(1.0e-10, ge=0)
    kappa: float = Field(1.0e-10, ge=0)


class CameraConfig(KerrlightBaseModel):
    """Observer state and image plane."""
    type: Literal["plane", "pinhole"] = "plane"
    r: float = Field(100.0, gt=0)
    th: float = Field(1.4835298641951802, ge=0.0, le=math.pi)
    ph: float = 0.0
    urn: float = 0.0
    uthn: float = 0.0
    uphn: float = 0.0
    k_r: float = 1.0
    k_th: float = 0.0
    k_ph: float = 0.0
    rotation: float = 0.0
    width: float = Field(40.0, gt=0)
    resolution: int = 64
    pole: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        """Normalize camera type to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v


class RayConfig(KerrlightBaseModel):
    """Geodesic integration controls."""
    flat: bool = False
    terminate: Literal["photon", "multiplicative", "additive"] = "multiplicative"
    factor: float = Field(1.01, gt=0)
    step: float = Field(0.01, gt=0, description="Initial step as a fraction of camera radius")
    max_steps: int = Field(10000, ge=1)
    max_retries: int = Field(10, ge=0)
    tol_abs: float = Field(1.0e-8, gt=0)
    tol_rel: float = Field(1.0e-8, gt=0)
    err_factor: float = Field(0.9, gt=0, le=1.0)
    min_factor: float = Field(0.2, gt=0)
    max_factor: float = Field(10.0, gt=0)


class ImageConfig(KerrlightBaseModel):
    """Which per-pixel quantities are accumulated."""
    light: bool = True
    frequency: float = Field(230.0e9, gt=0)
    normalization: Literal["camera", "infinity"] = "camera"
    polarization: bool = False
    time: bool = False
    length: bool = False
    lambda_: bool = Field(False, alias="lambda")
    emission: bool = False
    tau: bool = False
    lambda_ave: bool = False
    emission_ave: bool = False
    tau_int: bool = False
    z_turnings: bool = False
    # Equatorial crossings kept along each ray, counted from the camera; -1 keeps all
    cut_z_turnings: int = Field(-1, ge=-1)

    model_config = KerrlightBaseModel.model_config.copy()
    model_config.update({"populate_by_name": True})


class AdaptiveConfig(KerrlightBaseModel):
    """Adaptive refinement criteria. A negative fraction disables a criterion."""
    max_level: int = Field(0, ge=0)
    block_size: int = 8
    val_frac: float = -1.0
    val_cut: float = 0.0
    abs_grad_frac: float = -1.0
    abs_grad_cut: float = 0.0
    rel_grad_frac: float = -1.0
    rel_grad_cut: float = 0.0
    abs_lapl_frac: float = -1.0
    abs_lapl_cut: float = 0.0
    rel_lapl_frac: float = -1.0
    rel_lapl_cut: float = 0.0


class OutputConfig(KerrlightBaseModel):
    """Output file configuration."""
    directory: Optional[str] = None
    save_image: bool = True
    save_plot: bool = False


class LoggingConfig(KerrlightBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(KerrlightBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all ray-tracing parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    model_type: Literal["formula", "simulation"] = "formula"
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    formula: FormulaConfig = Field(default_factory=FormulaConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    plasma: PlasmaConfig = Field(default_factory=PlasmaConfig)
    slow_light: SlowLightConfig = Field(default_factory=SlowLightConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    ray: RayConfig = Field(default_factory=RayConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("model_type", mode="before")
    @classmethod
    def normalize_model_type(cls, v):
        """Normalize model names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v
