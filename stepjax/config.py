"""Default configuration values for stepjax simulations.

This module centralizes numeric defaults used throughout the driver.
Time is in arbitrary but consistent units (the reference cell uses seconds).
"""

# Newton iteration limits
DEFAULT_MAX_ITERATIONS = 20
DEFAULT_NONLINEAR_TOLERANCE = 1e-6

# Residual growth ratio that, sustained over two consecutive iterations,
# marks an attempt as diverged
DEFAULT_DIVERGENCE_FACTOR = 10.0

# Step cutting
DEFAULT_CUT_FACTOR = 0.5
DEFAULT_MIN_DT = 1e-9
DEFAULT_MAX_TIMESTEP_CUTS = 20

# State-change selector bounds
DEFAULT_MAX_GROWTH = 2.0
DEFAULT_MIN_SHRINK = 0.1

# Fraction of a nominal step below which its remainder is absorbed
# into the current attempt instead of producing a sliver step
STEP_END_RTOL = 1e-10

# Tolerance for step lengths summing to a declared duration
DURATION_RTOL = 1e-9

# Diagonal regularization added to autodiff Jacobians before the dense solve
JACOBIAN_REGULARIZATION = 1e-14

SECONDS_PER_HOUR = 3600.0
