class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class SchedulerError(AppError):
    """Raised when a generation request is invalid and no run can start."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class IncompleteScheduleError(AppError):
    """Raised when a run leaves slots empty and the gap policy forbids it."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class RepositoryError(AppError):
    """Raised when the schedule store cannot be read."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=503, details=details)

class PersistenceError(AppError):
    """Raised when replacing a schedule fails; the previous schedule is kept."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=500, details=details)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
