"""
coredeploy - Resumable core contract deployments

Provisions the core units of a lending system on a target network, wires
them together and registers collateral. Progress is recorded in a JSON
state file so an interrupted run resumes where it stopped.
"""

__version__ = "0.1.0"


__all__ = ["TargetConfig", "load_config", "get_coredeploy_home", "RunOptions", "run"]

from .config import TargetConfig, load_config, get_coredeploy_home
from .orchestrator import RunOptions, run
