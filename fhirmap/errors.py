"""Error accumulation for best-effort FHIR imports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Iterator, List, Optional, TypeVar

import structlog

from .model import Concept

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ErrorCollector:
    """Ordered list of human readable problems found while importing.

    Import never aborts on data quality problems. Each problem is recorded
    here and the partially populated entity is returned alongside it so a
    caller can report every issue in a single pass.
    """

    def __init__(self, resource_type: Optional[str] = None) -> None:
        self.resource_type = resource_type
        self._messages: List[str] = []

    def add(self, message: str, **context: object) -> None:
        """Record ``message`` and log it with optional ``context``."""

        self._messages.append(message)
        logger.warning(
            "import_error",
            resource_type=self.resource_type,
            error=message,
            **context,
        )

    def extend(self, messages: "ErrorCollector | List[str]") -> None:
        for message in messages:
            self.add(message)

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    def __iter__(self) -> Iterator[str]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __bool__(self) -> bool:
        return bool(self._messages)


@dataclass
class ImportResult(Generic[T]):
    """Entity produced by an import together with its diagnostics.

    Attributes
    ----------
    entity:
        Best-effort domain object. Fields that failed to resolve are left
        unset.
    errors:
        Problems found while building ``entity`` in the order encountered.
    decimal_updates:
        Concepts that received a fractional numeric value while
        disallowing decimals. The caller decides whether to promote them.
    """

    entity: T
    errors: List[str] = field(default_factory=list)
    decimal_updates: List[Concept] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
