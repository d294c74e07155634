"""jobtrack — production-job lifecycle engine with guarded stage transitions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jobtrack")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from jobtrack.core import JobTrackDB
from jobtrack.lifecycle import LifecycleService
from jobtrack.models import Category, Project, Role
from jobtrack.outcomes import BlockCode, LifecycleResult

__all__ = ["BlockCode", "Category", "JobTrackDB", "LifecycleResult", "LifecycleService", "Project", "Role", "__version__"]
