"""Exit codes for the scangate CLI.

- 0: Gate passed, every blocking task completed
- 1: At least one category failed its severity gate
- 2: Gate passed but a blocking task failed, timed out or errored
- 3: Invalid configuration (pipeline inputs or severity map)
- 4: Planning error (cycle, unsatisfiable dependency)
"""

EXIT_SUCCESS = 0
EXIT_GATE_FAILED = 1
EXIT_INFRA_ERROR = 2
EXIT_INVALID_CONFIG = 3
EXIT_PLANNING_ERROR = 4
