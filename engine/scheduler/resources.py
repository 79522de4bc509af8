import shutil
import tempfile
import threading
from pathlib import Path
from typing import Optional

from scanner.tools.utils import get_logger

log = get_logger("engine.resources")


class ResourceBudget:
    """
    Bounded execution resource controller.

    One unit == one process slot. The total is the
    configured concurrency limit.
    """

    __slots__ = ("_total", "_available", "_lock")

    def __init__(self, total_units: int):
        if total_units <= 0:
            raise ValueError("total_units must be > 0")
        self._total: int = total_units
        self._available: int = total_units
        self._lock = threading.Lock()

    @property
    def total(self) -> int:
        return self._total

    @property
    def available(self) -> int:
        return self._available

    @property
    def in_use(self) -> int:
        return self._total - self._available

    def can_allocate(self, units: int = 1) -> bool:
        return units <= self._available

    def allocate(self, units: int = 1) -> None:
        with self._lock:
            if units > self._available:
                raise RuntimeError("Resource budget exceeded")
            self._available -= units

    def release(self, units: int = 1) -> None:
        with self._lock:
            if self._available + units > self._total:
                raise RuntimeError("Resource budget over-release")
            self._available += units


class ExecutionLease:
    """
    Scoped ownership of one slot plus a private scratch directory.

    Released exactly once, whichever way the attempt ends
    (success, failure, timeout, abort). Usable as a context manager.
    """

    __slots__ = ("task_id", "_budget", "_units", "_scratch_dir", "_released")

    def __init__(
        self,
        task_id: str,
        budget: ResourceBudget,
        *,
        units: int = 1,
        scratch_root: Optional[Path] = None,
    ):
        budget.allocate(units)
        self.task_id = task_id
        self._budget = budget
        self._units = units
        self._released = False
        try:
            safe_id = task_id.replace(":", "-").replace("/", "-")
            self._scratch_dir = Path(
                tempfile.mkdtemp(
                    prefix=f"scangate-{safe_id}-",
                    dir=str(scratch_root) if scratch_root else None,
                )
            )
        except OSError:
            budget.release(units)
            raise

    @property
    def scratch_dir(self) -> Path:
        return self._scratch_dir

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            shutil.rmtree(self._scratch_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning(f"Scratch dir for {self.task_id} left behind at {self._scratch_dir}: {e}")
        finally:
            self._budget.release(self._units)

    def __enter__(self) -> "ExecutionLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
