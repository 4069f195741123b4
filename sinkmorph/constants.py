"""Single source of truth for default values and numerical floors."""

# --- Solver defaults (used by schemas, config, solver_service) ---
DEFAULT_EPSILON = 0.05
DEFAULT_MAX_ITER = 500
DEFAULT_TOL = 1e-6
DEFAULT_PLAN_MAX_CELLS = 65536
DEFAULT_MAX_CELLS = 16_000_000

# --- Numerical floors ---
EPSILON_FLOOR = 1e-12
KERNEL_PRODUCT_FLOOR = 1e-300
LOG_WEIGHT_FLOOR = 1e-300
DEGENERATE_ROW_MASS = 1e-20
LOG_DUAL_V_FLOOR = 1e-10
STAGE_RESIDUAL_FLOOR = 1e-12

# --- Progress cadence (iterations between progress events) ---
LINEAR_PROGRESS_EVERY = 10
LOG_PROGRESS_EVERY = 5

# --- Input validation ---
WEIGHT_SUM_TOL = 1e-5

# --- Reference backend block size (rows/cols reduced per step) ---
REFERENCE_BLOCK_SIZE = 256

# --- Sampling ---
SAMPLING_GRID_SIZE = 128
EMPTY_MASS_THRESHOLD = 1e-12
