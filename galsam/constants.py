"""Numerical and physical constants used by the galaxy evolution models.

Masses are expressed in Msun/h, times in Gyr, velocities in km/s and
lengths in Mpc/h.  Specific angular momenta therefore carry units of
Mpc/h km/s.
"""
from __future__ import annotations

# Reservoirs lighter than this are reset to an empty state.
TOLERANCE: float = 1e-10

# Nudge applied to the reheating loading so that it stays above the ejection loading.
EPS3: float = 1e-3

# Ratio between the half-mass radius and the scale length of an exponential disk.
RDISK_HALF_SCALE: float = 1.678

# Conversion between sAM / velocity and the disk scale length.
EAGLEJCONV: float = 0.67777 / 1000.0

# Solar mass in grams
MSOLAR_G: float = 1.98892e33

KILO: float = 1.0e3

# One Mpc / (km/s) expressed in Gyr
MPCKM2GYR: float = 977.8

# Gravitational constant in Mpc (km/s)^2 / Msun
G_MPC_KMS2_MSUN: float = 4.3009e-9
