from __future__ import annotations

import threading
from enum import Enum
from typing import Union

from pydantic import BaseModel, PrivateAttr


class Stage(str, Enum):
    BALANCE = "balance"
    CLASSIFY = "classify"
    UNWIND = "unwind"
    LP_HOLDER = "lp-holder"
    POSITION = "position"
    EVENTS = "events"


class Skipped(BaseModel):
    """
    One unit of work that failed on its own and was left out of the result.
    :param `stage`: where in the pipeline it failed
    :param `target`: address, position id or block range
    :param `reason`: the error message
    """

    stage: Stage
    target: str
    reason: str


class RunReport(BaseModel):
    """Aggregates every skipped unit of work so they show up in the artifact and in tests"""

    skipped: list[Skipped] = []
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def skip(self, stage: Stage, target: Union[str, int], reason: Union[str, Exception]) -> Skipped:
        item = Skipped(stage=stage, target=str(target), reason=str(reason))
        with self._lock:
            self.skipped.append(item)
        return item

    def by_stage(self, stage: Stage) -> list[Skipped]:
        return [s for s in self.skipped if s.stage == stage]
