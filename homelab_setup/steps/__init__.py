from .step_00_preflight import PreflightStep
from .step_10_user import UserStep
from .step_20_directories import DirectoryStep
from .step_30_wireguard import WireGuardStep
from .step_40_nfs import NFSStep
from .step_50_containers import ContainerStep
from .step_60_deployment import DeploymentStep

__all__ = [
    "PreflightStep",
    "UserStep",
    "DirectoryStep",
    "WireGuardStep",
    "NFSStep",
    "ContainerStep",
    "DeploymentStep",
]
