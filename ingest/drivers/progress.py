"""Running counters, throughput and ETA for long import runs."""

import time
from datetime import timedelta


class ImportProgress:
    """Pages, conversions, index writes and errors for one run."""

    def __init__(self, total: int = 0, clock=time.monotonic):
        self.total = total
        self.pages = 0
        self.converted = 0
        self.skipped = 0
        self.indexed = 0
        self.errors = 0
        self._clock = clock
        self.started = clock()

    def record_page(self, converted: int, skipped: int) -> None:
        self.pages += 1
        self.converted += converted
        self.skipped += skipped

    def record_batch(self, submitted: int, accepted: int) -> None:
        """Account one bulk write; rejected documents become errors."""
        self.indexed += accepted
        self.errors += max(submitted - accepted, 0)

    def record_failed_batch(self, submitted: int) -> None:
        self.errors += submitted

    @property
    def elapsed(self) -> float:
        return max(self._clock() - self.started, 0.0)

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.indexed / self.total * 100

    @property
    def rate(self) -> float:
        """Indexed records per second."""
        elapsed = self.elapsed
        return self.indexed / elapsed if elapsed > 0 else 0.0

    @property
    def eta(self) -> timedelta | None:
        """Time left at the current rate; None until there is a rate."""
        rate = self.rate
        if rate <= 0 or self.total <= 0:
            return None
        remaining = max(self.total - self.indexed, 0)
        return timedelta(seconds=round(remaining / rate))

    def summary(self) -> dict:
        return {
            "pages": self.pages,
            "converted": self.converted,
            "skipped": self.skipped,
            "indexed": self.indexed,
            "errors": self.errors,
            "total": self.total,
            "elapsed_seconds": round(self.elapsed, 1),
        }

    def __str__(self) -> str:
        eta = str(self.eta) if self.eta is not None else "?"
        return (
            f"Page {self.pages} | Indexed: {self.indexed}/{self.total} ({self.percent:.1f}%) | "
            f"Errors: {self.errors} | Rate: {self.rate:.0f}/sec | ETA: {eta}"
        )
