from abc import ABC, abstractmethod

from paygate.models.processor import PaymentResult, Processor
from paygate.models.transaction import CaptureRequest, Transaction, TransactionRequest, VoidRequest


class AbstractAdapter(ABC):
    """
    Uniform contract every processor integration satisfies.

    Implementations never raise for business outcomes; declines and
    technical failures are encoded in PaymentResult.status. The engine
    still guards against unexpected exceptions.
    """

    code: str

    @abstractmethod
    async def authorize(
        self, processor: Processor, request: TransactionRequest, transaction: Transaction
    ) -> PaymentResult:
        """Reserve funds for the transaction."""

    @abstractmethod
    async def capture(
        self, processor: Processor, request: CaptureRequest, transaction: Transaction
    ) -> PaymentResult:
        """Settle a previously authorized transaction."""

    @abstractmethod
    async def void(
        self, processor: Processor, request: VoidRequest, transaction: Transaction
    ) -> PaymentResult:
        """Cancel a pending or authorized transaction."""

    @abstractmethod
    async def health_check(self, processor: Processor) -> bool:
        """Live probe of the remote endpoint."""

    def get_code(self) -> str:
        return self.code
