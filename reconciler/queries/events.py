import logging
import threading
import time
from typing import Any, Callable, NamedTuple, Optional

from reconciler.models import RunReport, Stage
from reconciler.queries.common import is_range_too_large, is_rate_limited

logger = logging.getLogger(__name__)


class Gap(NamedTuple):
    from_block: int
    to_block: int
    reason: str


class EventQuerier:
    """
    Fetches logs over a block range in chunks, adapting to provider limits.

    - "range too large": halve `max_chunk_size` (never below MIN_CHUNK_SIZE) and retry the same chunk
    - rate limited: sleep `backoff_seconds` and retry the same chunk, forever unless `max_retries` is set
    - anything else: log, record a gap and move on to the next chunk

    The shrunken chunk size sticks for every later query made through this instance.
    Gaps are not fatal: the reconciliation shows the missing supply instead.
    """

    MIN_CHUNK_SIZE = 10

    def __init__(
        self,
        max_chunk_size: int = 1000,
        backoff_seconds: float = 2.0,
        max_retries: Optional[int] = None,
        report: Optional[RunReport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_chunk_size = max(self.MIN_CHUNK_SIZE, max_chunk_size)
        self.backoff_seconds = backoff_seconds
        self.max_retries = max_retries
        self.report = report
        self.gaps: list[Gap] = []
        self._sleep = sleep
        self._lock = threading.Lock()

    def _shrink(self, attempted: int) -> int:
        with self._lock:
            # another caller may already have shrunk it further
            if self.max_chunk_size >= attempted:
                self.max_chunk_size = max(self.MIN_CHUNK_SIZE, attempted // 2)
            return self.max_chunk_size

    def _record_gap(self, from_block: int, to_block: int, reason: str) -> None:
        logger.warning(f"Skipping blocks {from_block}-{to_block}: {reason}")
        self.gaps.append(Gap(from_block, to_block, reason))
        if self.report is not None:
            self.report.skip(Stage.EVENTS, f"{from_block}-{to_block}", reason)

    def query_events(
        self,
        event: Any,
        from_block: int,
        to_block: int,
        argument_filters: Optional[dict] = None,
    ) -> list[Any]:
        """
        :param `event`: a web3 contract event, eg `contract.events.Transfer`
        :param `from_block`, `to_block`: inclusive range
        """
        events: list[Any] = []
        current = from_block
        retries = 0

        while current <= to_block:
            chunk = self.max_chunk_size
            end = min(current + chunk - 1, to_block)
            try:
                logger.debug(f"Querying blocks {current} to {end}")
                events += event.get_logs(
                    from_block=current, to_block=end, argument_filters=argument_filters
                )
                current = end + 1
                retries = 0
                continue
            except Exception as e:
                if is_range_too_large(e) and chunk > self.MIN_CHUNK_SIZE:
                    new_size = self._shrink(chunk)
                    logger.warning(f"Reducing block range to {new_size} (RPC limit)")
                    continue

                if is_rate_limited(e):
                    retries += 1
                    if self.max_retries is None or retries <= self.max_retries:
                        logger.warning(
                            f"Rate limited on blocks {current}-{end}, "
                            f"waiting {self.backoff_seconds}s (attempt {retries})"
                        )
                        self._sleep(self.backoff_seconds)
                        continue
                    reason = f"rate limited after {self.max_retries} retries: {e}"
                elif is_range_too_large(e):
                    reason = f"range still too large at {chunk} blocks: {e}"
                else:
                    reason = str(e)

            self._record_gap(current, end, reason)
            current = end + 1
            retries = 0

        return events
