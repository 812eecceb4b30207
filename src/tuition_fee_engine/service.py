import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.engine import ScheduleView, compute_breakdown, payment_view
from tuition_fee_engine.models import FeeStructure, PaymentPlan, PaymentTransaction
from tuition_fee_engine.progress import ProgressSummary, get_progress
from tuition_fee_engine.store import FeeRecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentInputs:
    """What the engine needs for one student, as fetched from the store."""
    fee_structure: Optional[FeeStructure]
    transactions: Tuple[PaymentTransaction, ...]


class PaymentViewService:
    """
    Fetches a student's records and runs the engine over them.

    Fetched inputs are memoized per (student_id, cohort_id, plan). Every
    write that goes through the service drops the student's entries and
    bumps the student's generation, so a fetch that was already running
    when the write happened is not cached and the next read re-derives
    statuses from fresh records.
    """

    def __init__(
        self,
        store: FeeRecordStore,
        settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
        max_workers: int = 4,
    ):
        self.store = store
        self.settings = settings
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fee-engine")
        self._lock = threading.Lock()
        self._cache: Dict[Tuple[str, Optional[str], PaymentPlan], StudentInputs] = {}
        self._generations: Dict[str, int] = defaultdict(int)
        self._global_generation = 0
        self.cache_stats = {"hits": 0, "misses": 0, "invalidations": 0}

    # ==================== Fetching ====================

    def resolve_fee_structure(self, student_id: str, cohort_id: Optional[str]) -> Optional[FeeStructure]:
        """A student's custom fee structure replaces the cohort default entirely."""
        custom = self.store.get_custom_fee_structure(student_id, cohort_id)
        if custom is not None:
            logger.debug("Using custom fee structure for student %s", student_id)
            return custom
        if not cohort_id:
            return None
        return self.store.get_cohort_fee_structure(cohort_id)

    def fetch_inputs(self, student_id: str, cohort_id: Optional[str], plan: Any = None) -> StudentInputs:
        plan = PaymentPlan.parse(plan)
        key = (student_id, cohort_id, plan)
        if self.settings.cache_enabled:
            with self._lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self.cache_stats["hits"] += 1
                    return cached
                self.cache_stats["misses"] += 1
                generation = self._generation(student_id)

        # the two lookups do not depend on each other
        structure_future = self._executor.submit(self.resolve_fee_structure, student_id, cohort_id)
        transactions_future = self._executor.submit(self.store.list_transactions, student_id)
        inputs = StudentInputs(
            fee_structure=structure_future.result(),
            transactions=tuple(transactions_future.result()),
        )

        if self.settings.cache_enabled:
            with self._lock:
                if self._generation(student_id) == generation:
                    self._cache[key] = inputs
                else:
                    logger.debug("Records for student %s changed during fetch; not caching", student_id)
        return inputs

    def _generation(self, student_id: str) -> Tuple[int, int]:
        # callers hold self._lock
        return self._global_generation, self._generations[student_id]

    def invalidate(self, student_id: Optional[str] = None) -> int:
        """Drop cached inputs for one student, or for everyone. Returns how many entries went."""
        with self._lock:
            if student_id is None:
                self._global_generation += 1
                keys = list(self._cache)
            else:
                self._generations[student_id] += 1
                keys = [k for k in self._cache if k[0] == student_id]
            for key in keys:
                del self._cache[key]
            self.cache_stats["invalidations"] += len(keys)
        if keys:
            logger.debug("Invalidated %d cached entries (student=%s)", len(keys), student_id)
        return len(keys)

    # ==================== Reads ====================

    def payment_view(
        self,
        student_id: str,
        cohort_id: Optional[str],
        plan: Any,
        scholarship_amount: Any = 0,
        as_of: Any = None,
    ) -> ScheduleView:
        inputs = self.fetch_inputs(student_id, cohort_id, plan)
        return payment_view(
            inputs.fee_structure,
            plan,
            inputs.transactions,
            scholarship_amount,
            as_of,
            self.settings,
        )

    def progress(
        self,
        student_id: str,
        cohort_id: Optional[str],
        plan: Any,
        scholarship_amount: Any = 0,
        stored_total: Any = None,
        stored_paid: Any = None,
        as_of: Any = None,
    ) -> ProgressSummary:
        """Live progress, or the stored totals when no schedule can be built."""
        inputs = self.fetch_inputs(student_id, cohort_id, plan)

        def build():
            if inputs.fee_structure is None or not PaymentPlan.parse(plan).is_selected:
                return None
            return compute_breakdown(inputs.fee_structure, plan, scholarship_amount, as_of, self.settings)

        return get_progress(build, inputs.transactions, stored_total, stored_paid)

    # ==================== Writes ====================

    def record_transaction(self, student_id: str, transaction: PaymentTransaction) -> PaymentTransaction:
        stored = self.store.record_transaction(student_id, transaction)
        self.invalidate(student_id)
        return stored

    def update_verification(self, student_id: str, transaction_id: str, status: Any, amount: Any = None) -> PaymentTransaction:
        updated = self.store.update_verification(student_id, transaction_id, status, amount)
        self.invalidate(student_id)
        return updated

    def fee_structure_changed(self, student_id: Optional[str] = None) -> None:
        """Call after an admin edits a fee structure; without a student every entry goes."""
        self.invalidate(student_id)

    # ==================== Lifecycle ====================

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "PaymentViewService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

