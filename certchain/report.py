"""
Itemized validation reports.

Reports are immutable: every operation that adds findings returns a new
report, so that fragments produced by concurrent sub-validations can be
merged by whoever orchestrates them.
"""

import enum
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Tuple

from asn1crypto import x509

__all__ = [
    'ReportItemStatus',
    'ValidationResult',
    'ReportItem',
    'CertificateReportItem',
    'ValidationReport',
]


@enum.unique
class ReportItemStatus(enum.IntEnum):
    """
    Status of a single finding, ordered from harmless to fatal.
    """

    INFO = 0
    """
    Purely informational finding.
    """

    INDETERMINATE = 1
    """
    The check could not be carried out conclusively.
    """

    INVALID = 2
    """
    The check failed.
    """


@enum.unique
class ValidationResult(enum.Enum):
    """
    Aggregate outcome of a validation report.
    """

    VALID = 'valid'
    INDETERMINATE = 'indeterminate'
    INVALID = 'invalid'

    @classmethod
    def from_status(cls, status: ReportItemStatus) -> 'ValidationResult':
        if status == ReportItemStatus.INVALID:
            return ValidationResult.INVALID
        elif status == ReportItemStatus.INDETERMINATE:
            return ValidationResult.INDETERMINATE
        return ValidationResult.VALID


@dataclass(frozen=True)
class ReportItem:
    """
    A single finding of a validation run.
    """

    check_name: str
    """
    Name of the check that produced this item.
    """

    message: str
    """
    Human-readable description of the finding.
    """

    status: ReportItemStatus
    """
    Status of the finding.
    """

    exception: Optional[Exception] = None
    """
    Exception that caused this finding, if any.
    """

    def with_status(self, status: ReportItemStatus) -> 'ReportItem':
        return replace(self, status=status)

    def __str__(self):
        result = f"{self.check_name}: {self.message} [{self.status.name}]"
        if self.exception is not None:
            result += f" ({type(self.exception).__name__}: {self.exception})"
        return result


@dataclass(frozen=True)
class CertificateReportItem(ReportItem):
    """
    A finding concerning one particular certificate.
    """

    certificate: Optional[x509.Certificate] = None
    """
    The certificate this finding is about.
    """

    def __str__(self):
        base = super().__str__()
        if self.certificate is None:
            return base
        return f"{base} <{self.certificate.subject.human_friendly}>"


@dataclass(frozen=True)
class ValidationReport:
    """
    Ordered collection of findings. The report's result is determined by
    its worst item.
    """

    items: Tuple[ReportItem, ...] = ()

    @property
    def status(self) -> ReportItemStatus:
        return max(
            (item.status for item in self.items),
            default=ReportItemStatus.INFO,
        )

    @property
    def validation_result(self) -> ValidationResult:
        return ValidationResult.from_status(self.status)

    @property
    def failures(self) -> Tuple[ReportItem, ...]:
        return tuple(
            item
            for item in self.items
            if item.status != ReportItemStatus.INFO
        )

    @property
    def certificate_failures(self) -> Tuple[CertificateReportItem, ...]:
        return tuple(
            item
            for item in self.failures
            if isinstance(item, CertificateReportItem)
        )

    @property
    def log_items(self) -> Tuple[ReportItem, ...]:
        return tuple(
            item
            for item in self.items
            if item.status == ReportItemStatus.INFO
        )

    def add_item(self, item: ReportItem) -> 'ValidationReport':
        return ValidationReport(items=self.items + (item,))

    def add_items(self, items: Iterable[ReportItem]) -> 'ValidationReport':
        return ValidationReport(items=self.items + tuple(items))

    def merge(self, other: 'ValidationReport') -> 'ValidationReport':
        if not other.items:
            return self
        return ValidationReport(items=self.items + other.items)

    def cap_status(self, ceiling: ReportItemStatus) -> 'ValidationReport':
        """
        Return a copy of this report in which no item is worse than
        ``ceiling``.
        """
        return ValidationReport(
            items=tuple(
                item if item.status <= ceiling else item.with_status(ceiling)
                for item in self.items
            )
        )

    def __len__(self):
        return len(self.items)

    def __str__(self):
        lines = [f"Validation result: {self.validation_result.name}"]
        if self.failures:
            lines.append("Failures:")
            lines.extend(f"  {item}" for item in self.failures)
        if self.log_items:
            lines.append("Log:")
            lines.extend(f"  {item}" for item in self.log_items)
        return '\n'.join(lines)
