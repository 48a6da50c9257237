from taskflow.ratelimit.limiter import RateLimit, RateLimiter

__all__ = ["RateLimit", "RateLimiter"]
