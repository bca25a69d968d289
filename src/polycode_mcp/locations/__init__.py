"""Location models and loader exports."""

from .loader import Location, LocationLoadError, LocationLoader, load_locations
from .models import SshConfig, WslConfig, local_location

__all__ = [
    "Location",
    "LocationLoadError",
    "LocationLoader",
    "SshConfig",
    "WslConfig",
    "load_locations",
    "local_location",
]
