from taskflow.queues.dispatcher import JobType, QueueDispatcher, RetryPolicy

__all__ = ["JobType", "QueueDispatcher", "RetryPolicy"]
