class GoalForgeError(Exception):
    """Base class for all exceptions in goalforge."""
    pass

class ConfigurationError(GoalForgeError):
    """Raised when there is a configuration-related error."""
    pass

class SecurityError(GoalForgeError):
    """Raised when a security boundary is violated."""
    pass

class GitToolsError(GoalForgeError):
    """Base class for all Git-related errors."""
    pass

class GitRepoError(GitToolsError):
    """Exception raised when the Git repository is invalid or not found."""
    pass

class GitWorktreeError(GitToolsError):
    """Exception raised for errors during Git worktree operations."""
    pass

class GitBranchError(GitToolsError):
    """Exception raised for errors during Git branch operations."""
    pass

class SandboxError(GoalForgeError):
    """Base class for sandbox lifecycle errors."""
    pass

class SandboxCreationError(SandboxError):
    """Raised when a sandbox workspace cannot be created."""
    pass

class SandboxCleanupError(SandboxError):
    """Raised when a sandbox workspace cannot be removed (leaked workspace)."""
    pass

class ResourceError(GoalForgeError):
    """Base class for resource accounting errors."""
    pass

class ReservationRejected(ResourceError):
    """Raised when granting a reservation would exceed a configured limit."""

    def __init__(self, message: str, dimension: str = ""):
        super().__init__(message)
        self.dimension = dimension

class PlanningError(GoalForgeError):
    """Raised when the plan oracle cannot produce candidate plans."""
    pass

class ToolError(GoalForgeError):
    """Base class for tool registry errors."""
    pass

class ToolNotFoundError(ToolError):
    """Raised when a tool id is not registered."""
    pass

class EngineError(GoalForgeError):
    """Base class for engine service errors."""
    pass

class EngineNotRunningError(EngineError):
    """Raised when a command is sent to an engine that is not running."""
    pass

class GoalNotFoundError(EngineError):
    """Raised when a goal id is unknown to the engine."""
    pass
