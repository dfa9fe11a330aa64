"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that ray-tracing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict
from kerrlight.schemas.base import KerrlightBaseModel


_FROZEN = ConfigDict(
    extra='forbid',
    validate_assignment=True,
    use_enum_values=True,
    str_strip_whitespace=True,
    frozen=True,
)


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalRuntimeConfig(KerrlightBaseModel):
    """Runtime worker pool configuration."""
    num_threads: int
    chunk_size: int

    model_config = _FROZEN


class InternalCheckpointConfig(KerrlightBaseModel):
    """Runtime checkpoint configuration.

    Note: file names are only required when the matching switch is on;
    resolve_config() enforces that.
    """
    geodesic_save: bool
    geodesic_load: bool
    geodesic_file: Optional[str]
    sample_save: bool
    sample_load: bool
    sample_file: Optional[str]

    model_config = _FROZEN


class InternalFormulaConfig(KerrlightBaseModel):
    """Runtime analytic model configuration."""
    mass: float
    spin: float
    r0: float
    h: float
    l0: float
    q: float
    nup: float
    cn0: float
    alpha: float
    a: float
    beta: float

    model_config = _FROZEN


class InternalSimulationConfig(KerrlightBaseModel):
    """Runtime simulation-data configuration."""
    file: Optional[str]
    a: float
    coord: Literal["sph_ks", "cart_ks"]
    m_msun: float
    rho_cgs: float
    interp: bool
    block_interp: bool

    model_config = _FROZEN


class InternalPlasmaConfig(KerrlightBaseModel):
    """Runtime electron population configuration."""
    mu: float
    ne_ni: float
    model: Literal["ti_te_beta", "code_kappa"]
    rat_low: float
    rat_high: float
    power_frac: float
    p: float
    gamma_min: float
    gamma_max: float
    kappa_frac: float
    kappa: float
    w: float
    sigma_max: float

    model_config = _FROZEN

    @property
    def thermal_frac(self) -> float:
        """Fraction of electrons in the thermal population."""
        return 1.0 - self.power_frac - self.kappa_frac


class InternalSlowLightConfig(KerrlightBaseModel):
    """Runtime slow-light configuration."""
    on: bool
    interp: bool
    t_start: float
    dt: float

    model_config = _FROZEN


class InternalFallbackConfig(KerrlightBaseModel):
    """Runtime fallback configuration."""
    nan: bool
    rho: float
    pgas: float
    kappa: float

    model_config = _FROZEN


class InternalCameraConfig(KerrlightBaseModel):
    """Runtime camera configuration."""
    type: Literal["plane", "pinhole"]
    r: float
    th: float
    ph: float
    urn: float
    uthn: float
    uphn: float
    k_r: float
    k_th: float
    k_ph: float
    rotation: float
    width: float
    resolution: int
    pole: bool

    model_config = _FROZEN


class InternalRayConfig(KerrlightBaseModel):
    """Runtime geodesic integration configuration."""
    flat: bool
    terminate: Literal["photon", "multiplicative", "additive"]
    factor: float
    step: float
    max_steps: int
    max_retries: int
    tol_abs: float
    tol_rel: float
    err_factor: float
    min_factor: float
    max_factor: float

    model_config = _FROZEN


class InternalImageConfig(KerrlightBaseModel):
    """Runtime image quantity selection."""
    light: bool
    frequency: float
    normalization: Literal["camera", "infinity"]
    polarization: bool
    time: bool
    length: bool
    lambda_: bool = Field(alias="lambda")
    emission: bool
    tau: bool
    lambda_ave: bool
    emission_ave: bool
    tau_int: bool
    z_turnings: bool
    cut_z_turnings: int = Field(ge=-1)

    model_config = ConfigDict(**_FROZEN, populate_by_name=True)


class InternalAdaptiveConfig(KerrlightBaseModel):
    """Runtime adaptive refinement configuration."""
    max_level: int
    block_size: int
    val_frac: float
    val_cut: float
    abs_grad_frac: float
    abs_grad_cut: float
    rel_grad_frac: float
    rel_grad_cut: float
    abs_lapl_frac: float
    abs_lapl_cut: float
    rel_lapl_frac: float
    rel_lapl_cut: float

    model_config = _FROZEN

    @property
    def on(self) -> bool:
        """True when refinement past the root level is requested."""
        return self.max_level > 0


class InternalOutputConfig(KerrlightBaseModel):
    """Runtime output configuration."""
    directory: Optional[str]
    save_image: bool
    save_plot: bool

    model_config = _FROZEN


class InternalLoggingConfig(KerrlightBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

    model_config = _FROZEN


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(KerrlightBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that ray-tracing code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters (no None for fields that runtime depends on).

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.resolution = config.camera.resolution  # NOT .get()
            self.spin = config.black_hole_spin

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO type checking
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    model_type: Literal["formula", "simulation"]
    runtime: InternalRuntimeConfig
    checkpoint: InternalCheckpointConfig
    formula: InternalFormulaConfig
    simulation: InternalSimulationConfig
    plasma: InternalPlasmaConfig
    slow_light: InternalSlowLightConfig
    fallback: InternalFallbackConfig
    camera: InternalCameraConfig
    ray: InternalRayConfig
    image: InternalImageConfig
    adaptive: InternalAdaptiveConfig
    output: InternalOutputConfig
    logging: InternalLoggingConfig

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
        populate_by_name=True,
    )

    @property
    def black_hole_spin(self) -> float:
        """Dimensionless spin of the model selected by model_type."""
        if self.model_type == "formula":
            return self.formula.spin
        return self.simulation.a

    @property
    def slow_light_on(self) -> bool:
        """Slow light only applies to simulation data."""
        return self.model_type == "simulation" and self.slow_light.on

    @property
    def polarization_on(self) -> bool:
        """Polarized transfer is active (already reconciled during resolution)."""
        return self.image.light and self.image.polarization
