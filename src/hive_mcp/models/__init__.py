from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import Assignment, AssignmentState, AssignmentSubmission
from hive_mcp.models.criteria import AssignmentCriteria, CompletionCriteria
from hive_mcp.models.project import Project, ProjectSummary
from hive_mcp.models.task import Task, TaskState
from hive_mcp.models.user import FavoriteResult, User

__all__ = [
    "Asset",
    "Assignment",
    "AssignmentState",
    "AssignmentSubmission",
    "AssignmentCriteria",
    "CompletionCriteria",
    "Project",
    "ProjectSummary",
    "Task",
    "TaskState",
    "FavoriteResult",
    "User",
]
