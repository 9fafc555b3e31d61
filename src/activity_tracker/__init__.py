"""Turn frontmost-window observations into project-tagged activity sessions."""

from .matcher import ProjectMatcher, RecentProjects, find_project_code
from .models import ActivitySession, ConfirmationRequested, WindowSnapshot
from .tracker import SessionTracker

__all__ = [
    "ActivitySession",
    "ConfirmationRequested",
    "ProjectMatcher",
    "RecentProjects",
    "SessionTracker",
    "WindowSnapshot",
    "find_project_code",
]

__version__ = "0.3.0"
