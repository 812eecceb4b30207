import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from typing import Any, Dict, List, Optional

from tuition_fee_engine.models import FeeStructure, PaymentTransaction, StructureType, VerificationStatus
from tuition_fee_engine.money import require_non_negative

logger = logging.getLogger(__name__)


class FeeRecordStore(ABC):
    """
    Where fee structures and payment transactions live.

    The engine only reads from here. Writes exist so a service can record
    a submission or a verification and then re-derive statuses.
    """

    @abstractmethod
    def get_custom_fee_structure(self, student_id: str, cohort_id: Optional[str] = None) -> Optional[FeeStructure]:
        ...

    @abstractmethod
    def get_cohort_fee_structure(self, cohort_id: str) -> Optional[FeeStructure]:
        ...

    @abstractmethod
    def list_transactions(self, student_id: str) -> List[PaymentTransaction]:
        ...

    @abstractmethod
    def record_transaction(self, student_id: str, transaction: PaymentTransaction) -> PaymentTransaction:
        ...

    @abstractmethod
    def update_verification(
        self,
        student_id: str,
        transaction_id: str,
        status: Any,
        amount: Any = None,
    ) -> PaymentTransaction:
        ...


class InMemoryFeeRecordStore(FeeRecordStore):
    """Dict-backed store for tests, demos and the CLI."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cohort_structures: Dict[str, FeeStructure] = {}
        self._custom_structures: Dict[str, FeeStructure] = {}    # student_id -> override
        self._transactions: Dict[str, List[PaymentTransaction]] = defaultdict(list)

    # ==================== Fee structures ====================

    def put_fee_structure(self, fee_structure: FeeStructure) -> None:
        with self._lock:
            if fee_structure.structure_type is StructureType.CUSTOM:
                if not fee_structure.student_id:
                    raise ValueError("a custom fee structure needs a student_id")
                self._custom_structures[fee_structure.student_id] = fee_structure
            else:
                if not fee_structure.cohort_id:
                    raise ValueError("a cohort fee structure needs a cohort_id")
                self._cohort_structures[fee_structure.cohort_id] = fee_structure
        logger.info(
            "Stored %s fee structure (cohort=%s, student=%s)",
            fee_structure.structure_type.value,
            fee_structure.cohort_id,
            fee_structure.student_id,
        )

    def get_custom_fee_structure(self, student_id: str, cohort_id: Optional[str] = None) -> Optional[FeeStructure]:
        with self._lock:
            custom = self._custom_structures.get(student_id)
        if custom is not None and cohort_id and custom.cohort_id and custom.cohort_id != cohort_id:
            return None
        return custom

    def get_cohort_fee_structure(self, cohort_id: str) -> Optional[FeeStructure]:
        with self._lock:
            return self._cohort_structures.get(cohort_id)

    # ==================== Transactions ====================

    def list_transactions(self, student_id: str) -> List[PaymentTransaction]:
        with self._lock:
            return list(self._transactions.get(student_id, ()))

    def record_transaction(self, student_id: str, transaction: PaymentTransaction) -> PaymentTransaction:
        if transaction.id is None:
            transaction = replace(transaction, id=str(uuid.uuid4()))
        with self._lock:
            self._transactions[student_id].append(transaction)
        logger.info("Recorded transaction %s of %s for student %s", transaction.id, transaction.amount, student_id)
        return transaction

    def update_verification(
        self,
        student_id: str,
        transaction_id: str,
        status: Any,
        amount: Any = None,
    ) -> PaymentTransaction:
        """
        Apply a staff decision to a stored transaction.

        amount replaces the stored amount, as a partial approval does.
        Raises KeyError when the transaction is not on file.
        """
        new_status = VerificationStatus.parse(status)
        with self._lock:
            rows = self._transactions.get(student_id, [])
            for index, tx in enumerate(rows):
                if tx.id == transaction_id:
                    changes: Dict[str, Any] = {"verification_status": new_status}
                    if amount is not None:
                        changes["amount"] = require_non_negative(amount, "approved amount")
                    rows[index] = replace(tx, **changes)
                    updated = rows[index]
                    break
            else:
                raise KeyError(f"no transaction {transaction_id} for student {student_id}")
        logger.info("Transaction %s is now %s", transaction_id, new_status.value)
        return updated
