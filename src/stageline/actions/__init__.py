from .base import Action, ActionSession, Command
from .build import Build
from .cluster import Apply, Query, RolloutStatus, get_pods, get_services
from .registry import ImageBuild, Push, RegistryLogin, Upload, maven_path
from .scan import QualityGate, Scan
from .scm import Checkout

__all__ = [
    "Action",
    "ActionSession",
    "Command",
    "Checkout",
    "Build",
    "Scan",
    "QualityGate",
    "Upload",
    "RegistryLogin",
    "ImageBuild",
    "Push",
    "Apply",
    "RolloutStatus",
    "Query",
    "get_pods",
    "get_services",
    "maven_path",
]
