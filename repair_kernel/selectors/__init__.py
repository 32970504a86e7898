"""Read-only query selectors."""

from repair_kernel.selectors.base import BaseSelector
from repair_kernel.selectors.job_selector import JobSelector

__all__ = ["BaseSelector", "JobSelector"]
