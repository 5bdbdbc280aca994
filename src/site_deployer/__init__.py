"""Site Deployer - transactional artifact deployment for static sites."""

__version__ = "0.1.0"
__author__ = "Site Deployer Team"

from site_deployer.core.config import Settings
from site_deployer.core.exceptions import DeployError

__all__ = ["Settings", "DeployError", "__version__"]
