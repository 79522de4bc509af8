import heapq
from typing import List, Optional, Tuple


class SchedulerQueue:
    """
    Ready queue for schedulable tasks.

    Ordering: FIFO by readiness round, ties broken by
    declaration order. Both keys are integers, so the
    order is fully deterministic (no wall-clock tie breaks).

    - Allows stale entries (lazy invalidation)
    - Scheduler validates readiness on pop
    - Never mutates existing heap entries
    """

    def __init__(self):
        self._heap: List[Tuple[int, int, str]] = []

    def push(self, ready_round: int, declaration_index: int, task_id: str) -> None:
        heapq.heappush(self._heap, (ready_round, declaration_index, task_id))

    def peek(self) -> Optional[str]:
        if not self._heap:
            return None
        return self._heap[0][2]

    def pop(self) -> Optional[str]:
        """
        Pop next task_id from queue.

        NOTE:
        Returned task_id may be stale.
        Caller MUST validate runtime state.
        """
        if not self._heap:
            return None

        _, _, task_id = heapq.heappop(self._heap)
        return task_id

    def drain(self) -> List[str]:
        items = [entry[2] for entry in sorted(self._heap)]
        self._heap.clear()
        return items

    def __len__(self) -> int:
        return len(self._heap)
