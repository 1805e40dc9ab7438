import time
import asyncio


class TokenBucketRateLimiter:
    """
    Caps outbound sends per minute across all enrollments that share one
    collaborator. The bucket is refilled in full once a minute has passed.
    """

    def __init__(self, rate_limit_per_minute: int):
        self.rate_limit = rate_limit_per_minute
        self.tokens = rate_limit_per_minute
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1):
        if self.rate_limit <= 0:
            return

        while True:
            async with self.lock:
                now = time.monotonic()
                elapsed = now - self.last_refill
                if elapsed >= 60:
                    self.tokens = self.rate_limit
                    self.last_refill = now
                    elapsed = 0

                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return

                wait_time = 60 - elapsed

            await asyncio.sleep(wait_time)
