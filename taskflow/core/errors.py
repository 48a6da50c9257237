"""
Exception hierarchy shared by the cache, rate limiter, queue and task services.

Every error carries the HTTP status it maps to so the API layer can translate
it without knowing where it was raised. Validation and authorization errors are
raised before any I/O; cache and queue errors wrap the underlying cause.
"""

ERROR_MESSAGES = {
    "TASKS": {
        "NOT_FOUND": "Task with ID {task_id} not found",
        "CREATE_FAILED": "Failed to create task",
        "FETCH_FAILED": "Failed to fetch tasks",
        "UPDATE_FAILED": "Failed to update task",
        "DELETE_FAILED": "Failed to delete task",
        "QUEUE_ERROR": "Failed to queue task status update",
        "INVALID_PAGINATION": "Page and limit must be positive integers",
        "STATS_FAILED": "Failed to retrieve task statistics",
        "INVALID_BATCH_INPUT": "Task IDs must be provided as an array",
        "EMPTY_BATCH": "Task IDs array cannot be empty",
        "INVALID_ACTION": "Invalid batch action: {action}",
        "BATCH_FAILED": "Batch operation failed",
        "FORBIDDEN": "You cannot perform this action on this task",
    },
    "CACHE": {
        "INVALID_KEY": "Invalid cache key",
        "INVALID_BULK_KEYS": "Invalid cache keys in bulk operation",
        "WRITE_FAILED": "Cache set failed: {cause}",
        "READ_FAILED": "Cache get failed: {cause}",
        "DELETE_FAILED": "Cache delete failed: {cause}",
        "CLEAR_FAILED": "Cache clear failed: {cause}",
        "STATS_FAILED": "Cache stats failed: {cause}",
    },
    "RATE_LIMIT": {
        "EXCEEDED": "You have exceeded the {limit} requests in {window_seconds:g} seconds.",
    },
}


class TaskflowError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Validation (400)


class ValidationError(TaskflowError):
    status_code = 400


class InvalidCacheKeyError(ValidationError):
    def __init__(self, message: str = ERROR_MESSAGES["CACHE"]["INVALID_KEY"]):
        super().__init__(message)


class InvalidBatchInputError(ValidationError):
    def __init__(self):
        super().__init__(ERROR_MESSAGES["TASKS"]["INVALID_BATCH_INPUT"])


class EmptyBatchError(ValidationError):
    def __init__(self):
        super().__init__(ERROR_MESSAGES["TASKS"]["EMPTY_BATCH"])


class InvalidActionError(ValidationError):
    def __init__(self, action):
        super().__init__(ERROR_MESSAGES["TASKS"]["INVALID_ACTION"].format(action=action))
        self.action = action


class InvalidPaginationError(ValidationError):
    def __init__(self):
        super().__init__(ERROR_MESSAGES["TASKS"]["INVALID_PAGINATION"])


# Access (403 / 404)


class AuthorizationError(TaskflowError):
    status_code = 403

    def __init__(self, message: str = ERROR_MESSAGES["TASKS"]["FORBIDDEN"]):
        super().__init__(message)


class NotFoundError(TaskflowError):
    status_code = 404

    def __init__(self, task_id: str):
        super().__init__(ERROR_MESSAGES["TASKS"]["NOT_FOUND"].format(task_id=task_id))
        self.task_id = task_id


# Rate limiting (429)


class RateLimitExceeded(TaskflowError):
    """Raised when a client goes over its sliding-window budget."""

    status_code = 429

    def __init__(self, limit: int, window_ms: int):
        super().__init__(
            ERROR_MESSAGES["RATE_LIMIT"]["EXCEEDED"].format(
                limit=limit, window_seconds=window_ms / 1000
            )
        )
        self.limit = limit
        self.window_ms = window_ms
        self.remaining = 0


# Infrastructure (503)


class CacheError(TaskflowError):
    status_code = 503


class CacheWriteError(CacheError):
    pass


class CacheReadError(CacheError):
    pass


class CacheDeleteError(CacheError):
    pass


class CacheClearError(CacheError):
    pass


class CacheStatsError(CacheError):
    pass


class QueueSubmitError(TaskflowError):
    status_code = 503

    def __init__(self, message: str = ERROR_MESSAGES["TASKS"]["QUEUE_ERROR"]):
        super().__init__(message)
