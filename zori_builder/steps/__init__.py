from .step_10_check_prerequisites import CheckPrerequisitesStep
from .step_20_prepare_workspace import PrepareWorkspaceStep
from .step_30_copy_releng import CopyRelengStep
from .step_40_fetch_installer import FetchInstallerStep
from .step_45_build_installer import BuildInstallerStep
from .step_50_configure_services import ConfigureServicesStep
from .step_60_configure_branding import ConfigureBrandingStep
from .step_70_configure_packages import ConfigurePackagesStep
from .step_80_assemble_image import AssembleImageStep
from .step_90_locate_artifact import LocateArtifactStep

__all__ = [
    "CheckPrerequisitesStep",
    "PrepareWorkspaceStep",
    "CopyRelengStep",
    "FetchInstallerStep",
    "BuildInstallerStep",
    "ConfigureServicesStep",
    "ConfigureBrandingStep",
    "ConfigurePackagesStep",
    "AssembleImageStep",
    "LocateArtifactStep",
]
