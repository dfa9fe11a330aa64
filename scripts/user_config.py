"""kerrlight User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the run. Every option and its default lives in kerrlight.schemas.param;
anything not set here keeps its default.

Usage:
    python scripts/run_raytrace.py scripts/user_config.py
    python scripts/run_raytrace.py scripts/user_config.py --num-threads 8
    python scripts/run_raytrace.py scripts/user_config.py --output-dir out --plot
"""

CONFIG = {
    # ========================================================================
    # MODEL
    # ========================================================================
    "MODEL_TYPE": "formula",  # "formula" (analytic torus) or "simulation"
    "SPIN": 0.9,              # Dimensionless black hole spin
    "SIMULATION_FILE": None,  # NetCDF grid, simulation model only

    # ========================================================================
    # CAMERA
    # ========================================================================
    "CAMERA_R": 100.0,        # Camera radius in gravitational radii
    "CAMERA_TH": 1.3,         # Polar angle in radians
    "CAMERA_PH": 0.0,
    "CAMERA_WIDTH": 30.0,     # Full image width in gravitational radii
    "RESOLUTION": 64,         # Root-level pixels per side

    # ========================================================================
    # IMAGE
    # ========================================================================
    "FREQUENCY": 230.0e9,     # Hz
    "POLARIZATION": False,    # Simulation model only

    # ========================================================================
    # ADAPTIVE REFINEMENT
    # ========================================================================
    "ADAPTIVE_MAX_LEVEL": 0,  # 0 disables refinement
    "ADAPTIVE_BLOCK_SIZE": 8, # Must divide RESOLUTION

    # ========================================================================
    # OUTPUT
    # ========================================================================
    "OUTPUT_DIR": None,       # None writes nothing

    # Nested sections override any option, e.g.
    # "adaptive": {"abs_grad_frac": 0.1, "abs_grad_cut": 1.0e-3},
    # "plasma": {"rat_high": 40.0},
}
