"""Physical constants in CGS units.

Values come from scipy.constants (CODATA) converted to CGS, so every
module works with the same numbers.
"""

import math

from scipy import constants as _si

__all__ = [
    'C', 'KB', 'H', 'E', 'ME', 'MP', 'GG_MSUN', 'HZ_PER_GAUSS',
    'NUM_CELL_VALUES', 'CELL_VALUE_NAMES',
]

C = _si.c * 1.0e2                       # speed of light, cm/s
KB = _si.k * 1.0e7                      # Boltzmann constant, erg/K
H = _si.h * 1.0e7                       # Planck constant, erg s
E = _si.e * _si.c * 10.0                # elementary charge, esu
ME = _si.m_e * 1.0e3                    # electron mass, g
MP = _si.m_p * 1.0e3                    # proton mass, g
GG_MSUN = 1.32712440018e26              # G * M_sun, cm^3/s^2

# Electron cyclotron frequency per unit field, Hz/G
HZ_PER_GAUSS = E / (2.0 * math.pi * ME * C)

# Per-sample fluid values tracked for averaged image quantities
CELL_VALUE_NAMES = ("rho", "n_e", "p_gas", "Theta_e", "B", "sigma", "beta_inv")
NUM_CELL_VALUES = len(CELL_VALUE_NAMES)
