"""
Constants
Centralised storage for step names, exit codes and report wording.
"""
ARROW = "→"

# Minimal validation step names
STEP_INSTALL = "install"
STEP_BUILD = "build"
STEP_TEST = "test"

# Synthetic step recorded when the commit cannot be checked out
STEP_CHECKOUT = "checkout"

# Exit codes used for non-process failures
EXIT_TIMEOUT = 124
EXIT_INFRASTRUCTURE = -1

MERGE_COMMIT_PREFIX = "[mergegate] Promote"
