import logging
import threading
from datetime import datetime, timezone

from paygate.models.exceptions import ProcessorNotFoundError
from paygate.models.processor import OperatingState, Processor
from paygate.processors.base import AbstractAdapter

logger = logging.getLogger(__name__)


def _normalize(code: str) -> str:
    return code.strip().upper()


class ProcessorRegistry:
    """
    Stores the configured processors and one adapter per processor code.
    Built once at startup from a static list and stored on the GatewayContext.

    Each processor has its own Lock; the CapacityLedger takes it for every
    read-modify-write of stats and volume.
    """

    def __init__(self, processors: list[Processor], adapters: list[AbstractAdapter]):
        self._processors: dict[str, Processor] = {}
        self._adapters: dict[str, AbstractAdapter] = {}
        self._locks: dict[str, threading.Lock] = {}

        for adapter in adapters:
            code = _normalize(adapter.get_code())
            self._adapters[code] = adapter
            logger.info(f"Adapter registered: {code}")

        for processor in processors:
            code = _normalize(processor.code)
            if code in self._processors:
                raise ValueError(f"Duplicate processor code: {code}")
            if code not in self._adapters:
                raise ValueError(f"No adapter registered for processor {code}")
            processor.code = code
            self._processors[code] = processor
            self._locks[code] = threading.Lock()

        logger.info(f"Processor registry ready: {self.codes()}")

    def get(self, code: str) -> Processor:
        processor = self._processors.get(_normalize(code))
        if processor is None:
            raise ProcessorNotFoundError(code)
        return processor

    def all(self) -> list[Processor]:
        return list(self._processors.values())

    def codes(self) -> list[str]:
        return list(self._processors.keys())

    def adapter(self, code: str) -> AbstractAdapter:
        adapter = self._adapters.get(_normalize(code))
        if adapter is None:
            raise ProcessorNotFoundError(code)
        return adapter

    def lock(self, code: str) -> threading.Lock:
        normalized = _normalize(code)
        if normalized not in self._locks:
            raise ProcessorNotFoundError(code)
        return self._locks[normalized]

    def set_operating_state(self, code: str, state: OperatingState) -> Processor:
        processor = self.get(code)
        previous = processor.operating_state
        processor.operating_state = state
        processor.updated_at = datetime.now(timezone.utc)
        if previous != state:
            logger.info(f"[{processor.code}] operating state {previous.value} -> {state.value}")
        return processor
