"""
Orchestrator Configuration

Provides:
- Scheduling and verbosity switches for a whole test run
- Environment variable loading
- Logging setup
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_HEALTH_CHECK_INTERVAL = 1.0
DEFAULT_HEALTH_CHECK_TIMEOUT = 30.0

ENV_SEQUENTIAL = "TESTINGDOCK_SEQUENTIAL"
ENV_VERBOSE = "TESTINGDOCK_VERBOSE"
ENV_MAX_PARALLEL = "TESTINGDOCK_MAX_PARALLEL"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class OrchestratorConfig:
    """Run-wide orchestration settings passed to every suite, network and container"""

    parallel: bool = True  # fan out over siblings concurrently
    verbose: bool = False  # follow container logs
    health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL
    default_health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT
    max_parallel: Optional[int] = None  # None = one task per sibling

    def __post_init__(self):
        if self.health_check_interval <= 0:
            raise ValueError("health_check_interval must be positive")
        if self.default_health_check_timeout <= 0:
            raise ValueError("default_health_check_timeout must be positive")
        if self.max_parallel is not None and self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")

    @classmethod
    def from_env(cls, environ=None) -> "OrchestratorConfig":
        """
        Build a configuration from TESTINGDOCK_* environment variables

        Args:
            environ: Mapping to read instead of os.environ
        """
        env = os.environ if environ is None else environ

        max_parallel = env.get(ENV_MAX_PARALLEL)
        return cls(
            parallel=env.get(ENV_SEQUENTIAL, "").strip().lower() not in _TRUTHY,
            verbose=env.get(ENV_VERBOSE, "").strip().lower() in _TRUTHY,
            max_parallel=int(max_parallel) if max_parallel else None
        )

    def to_dict(self) -> dict:
        return {
            "parallel": self.parallel,
            "verbose": self.verbose,
            "health_check_interval": self.health_check_interval,
            "default_health_check_timeout": self.default_health_check_timeout,
            "max_parallel": self.max_parallel
        }


def setup_logging(log_level: str = "INFO"):
    """
    Setup logging configuration

    Args:
        log_level: Logging level
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
