"""
fixedpoint_shims/diagnostics.py
═══════════════════════════════

Structured diagnostics for imprecision the engines tolerate.

An analysis never stops because a loop has no trip count or a divisor
may be zero; it widens the value, records a :class:`Diagnostic` and
carries on.  Every diagnostic is also logged (at WARNING for precision
loss, INFO otherwise) through the emitting module's logger.

    ┌───────────────────────────┬──────────────────────────────────────┐
    │ DiagnosticKind            │ raised when                          │
    ├───────────────────────────┼──────────────────────────────────────┤
    │ LOOP_WIDENED              │ loop did not converge within budget  │
    │ RECURSION_LIMIT           │ call deeper than the recursion bound │
    │ DIVISION_BY_ZERO_RANGE    │ divisor range contains zero          │
    │ DIVISOR_NEAR_ZERO         │ divisor below its type's precision   │
    │ OPAQUE_CALL               │ indirect or unknown external call    │
    │ UNRESOLVED_POINTER        │ store/load through unknown pointer   │
    │ TYPE_GENERATION           │ no fixed-point format fits a range   │
    │ ERROR_NOT_CONVERGED       │ error bound widened to infinity      │
    │ RISKY_COMPARISON          │ error may flip a comparison          │
    └───────────────────────────┴──────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

__all__ = [
    "DiagnosticSeverity",
    "DiagnosticKind",
    "Diagnostic",
    "DiagnosticLog",
]


class DiagnosticSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"


class DiagnosticKind(Enum):
    LOOP_WIDENED = "loopWidened"
    RECURSION_LIMIT = "recursionLimit"
    DIVISION_BY_ZERO_RANGE = "divisionByZeroRange"
    DIVISOR_NEAR_ZERO = "divisorNearZero"
    OPAQUE_CALL = "opaqueCall"
    UNRESOLVED_POINTER = "unresolvedPointer"
    TYPE_GENERATION = "typeGeneration"
    ERROR_NOT_CONVERGED = "errorNotConverged"
    RISKY_COMPARISON = "riskyComparison"

    @property
    def default_severity(self) -> DiagnosticSeverity:
        if self in (DiagnosticKind.OPAQUE_CALL, DiagnosticKind.RECURSION_LIMIT):
            return DiagnosticSeverity.INFORMATION
        return DiagnosticSeverity.WARNING


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    kind      : DiagnosticKind
    message   : Human-readable description
    severity  : DiagnosticSeverity
    node_id   : Program node the finding is attached to (None = global)
    function  : Name of the enclosing function, if any
    evidence  : Machine-readable details (ranges, bounds, depths)
    """
    kind: DiagnosticKind
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.WARNING
    node_id: Optional[int] = None
    function: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def error_id(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "errorId": self.error_id,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.node_id is not None:
            result["node"] = self.node_id
        if self.function:
            result["function"] = self.function
        if self.evidence:
            result["evidence"] = dict(self.evidence)
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __str__(self) -> str:
        where = f"{self.function}: " if self.function else ""
        node = f" [node {self.node_id}]" if self.node_id is not None else ""
        return f"{where}{self.severity.value}: {self.message}{node} [{self.kind.value}]"


class DiagnosticLog:
    """Ordered, de-duplicated collection of diagnostics.

    A (kind, node) pair is reported once no matter how many loop
    iterations or calling contexts reach it.
    """

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []
        self._seen: Set[Tuple[DiagnosticKind, Optional[int]]] = set()

    def report(
        self,
        kind: DiagnosticKind,
        message: str,
        *,
        node_id: Optional[int] = None,
        function: str = "",
        logger: Optional[logging.Logger] = None,
        **evidence: Any,
    ) -> bool:
        """Record a diagnostic; returns False if it was a duplicate."""
        key = (kind, node_id)
        if key in self._seen:
            return False
        self._seen.add(key)
        diag = Diagnostic(kind, message, kind.default_severity, node_id, function, evidence)
        self._items.append(diag)
        if logger is not None:
            level = logging.WARNING if diag.severity is DiagnosticSeverity.WARNING else logging.INFO
            logger.log(level, "%s", diag)
        return True

    def extend(self, other: DiagnosticLog) -> None:
        for diag in other:
            key = (diag.kind, diag.node_id)
            if key not in self._seen:
                self._seen.add(key)
                self._items.append(diag)

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self._items if d.kind is kind]

    def has(self, kind: DiagnosticKind, node_id: Optional[int] = None) -> bool:
        if node_id is None:
            return any(d.kind is kind for d in self._items)
        return (kind, node_id) in self._seen

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
