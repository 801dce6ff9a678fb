"""
Timeout and retry constants for the installer.

Centralizes timeout values to ensure consistency across the codebase
and make tuning easier. ``InstallerSettings`` uses these as defaults.
"""

from __future__ import annotations

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for query commands (ddev describe, drush status, docker ps)
COMMAND_DEFAULT_TIMEOUT_S = 120

# Timeout for long-running commands (composer create-project/install, site:install)
COMMAND_LONG_TIMEOUT_S = 1800

# Exit code reported when a command exceeds its timeout
TIMEOUT_EXIT_CODE = 124

# Exit code reported when a command executable cannot be found
NOT_FOUND_EXIT_CODE = 127

# Exit code reported when a command cannot be started (bad cwd, exec error)
CANNOT_EXECUTE_EXIT_CODE = 126

# =============================================================================
# Retry Configuration
# =============================================================================

# Extra attempts for container runtime start failures
CONTAINER_START_RETRIES = 1

# Fixed delay before retrying a container start
CONTAINER_START_RETRY_DELAY_S = 5.0

# Pause after starting the docker daemon before re-checking it
DOCKER_DAEMON_SETTLE_S = 3.0

# Upper bound for list-and-remove cleanup loops
CLEANUP_MAX_ATTEMPTS = 5

# Upper bound for the project name uniqueness search
NAME_MAX_ATTEMPTS = 1000
