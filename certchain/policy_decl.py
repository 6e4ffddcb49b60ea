"""
Context-dependent validation policy.

Every policy axis is a table mapping :class:`ContextPattern` objects to
values. A lookup resolves to the value registered for the most specific
pattern satisfied by the :class:`~certchain.context.ValidationContext`
being evaluated, falling back to a built-in default.
"""

import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import (
    Dict,
    FrozenSet,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .context import (
    CertificateOrigin,
    TimeMode,
    ValidationContext,
    ValidatorStage,
)
from .extensions import (
    OCSP_SIGNING,
    TIME_STAMPING,
    CertificateExtension,
    DynamicBasicConstraintsExtension,
    ExtendedKeyUsageExtension,
    KeyUsage,
    KeyUsageExtension,
)

__all__ = [
    'OnlineFetching',
    'ContextPattern',
    'SignatureValidationProperties',
    'resolve_policy',
    'DEFAULT_CONTINUE_AFTER_FAILURE',
    'DEFAULT_FRESHNESS_PRESENT',
    'DEFAULT_FRESHNESS_HISTORICAL',
    'DEFAULT_ONLINE_FETCHING',
]


@enum.unique
class OnlineFetching(enum.Enum):
    """
    Whether revocation clients that go online may be used.
    """

    ALWAYS = 'always'
    """
    Always consult online clients, in addition to offline ones.
    """

    NEVER = 'never'
    """
    Only use revocation data that is already available.
    """

    IF_NO_OTHER_OPTIONS = 'if_no_other_options'
    """
    Only go online if offline clients did not produce any data.
    """


DEFAULT_CONTINUE_AFTER_FAILURE = True
"""
Keep validating after the first failure by default, so that all problems
are reported.
"""

DEFAULT_FRESHNESS_PRESENT = timedelta(days=30)
"""
Freshness tolerance when validating against the present.
"""

DEFAULT_FRESHNESS_HISTORICAL = timedelta(minutes=1)
"""
Freshness tolerance when validating against a point in the past.
"""

DEFAULT_ONLINE_FETCHING = OnlineFetching.IF_NO_OTHER_OPTIONS
"""
Default online fetching mode.
"""


def _as_dimension(
    values: Union[None, enum.Enum, Iterable[enum.Enum]]
) -> Optional[FrozenSet]:
    if values is None:
        return None
    if isinstance(values, enum.Enum):
        return frozenset((values,))
    result = frozenset(values)
    if not result:
        raise ValueError("A pattern dimension cannot be empty.")
    return result


@dataclass(frozen=True)
class ContextPattern:
    """
    A partial :class:`~certchain.context.ValidationContext`. Each dimension
    is either unconstrained (``None``) or a set of admissible values.
    """

    certificate_origins: Optional[FrozenSet[CertificateOrigin]] = None
    validator_stages: Optional[FrozenSet[ValidatorStage]] = None
    time_modes: Optional[FrozenSet[TimeMode]] = None

    @classmethod
    def of(cls, certificate_origins=None, validator_stages=None,
           time_modes=None) -> 'ContextPattern':
        """
        Build a pattern from single values, iterables or ``None``.
        """
        return ContextPattern(
            certificate_origins=_as_dimension(certificate_origins),
            validator_stages=_as_dimension(validator_stages),
            time_modes=_as_dimension(time_modes),
        )

    def _dimensions(self) -> Tuple[Optional[FrozenSet], ...]:
        return self.certificate_origins, self.validator_stages, self.time_modes

    def matches(self, context: ValidationContext) -> bool:
        values = (
            context.certificate_origin,
            context.validator_stage,
            context.time_mode,
        )
        return all(
            allowed is None or value in allowed
            for allowed, value in zip(self._dimensions(), values)
        )

    @property
    def unconstrained_count(self) -> int:
        return sum(1 for d in self._dimensions() if d is None)

    def specificity(self) -> Tuple:
        """
        Sort key for patterns; larger is more specific.

        Patterns constraining more dimensions win. Between patterns that
        constrain the same number of dimensions, a constrained certificate
        origin beats a constrained validator stage, which beats a
        constrained time mode. After that, patterns admitting fewer values
        win, and a canonical ordering of the admitted values settles
        whatever is left.
        """
        dims = self._dimensions()
        return (
            -self.unconstrained_count,
            tuple(d is not None for d in dims),
            -sum(len(d) for d in dims if d is not None),
            tuple(
                () if d is None else tuple(sorted(v.value for v in d))
                for d in dims
            ),
        )


T = TypeVar('T')


def resolve_policy(
    entries: Mapping[ContextPattern, T], context: ValidationContext, default: T
) -> T:
    """
    Pick the value registered for the most specific pattern matching
    the given context.

    :param entries:
        Mapping of patterns to policy values.
    :param context:
        The validation context to resolve.
    :param default:
        Value to return if no pattern matches.
    """
    matching = [pattern for pattern in entries if pattern.matches(context)]
    if not matching:
        return default
    best = max(matching, key=ContextPattern.specificity)
    return entries[best]


class _PolicyTable(Generic[T]):
    def __init__(self, default: T):
        self.default = default
        self.entries: Dict[ContextPattern, T] = {}

    def set(self, pattern: ContextPattern, value: T):
        self.entries[pattern] = value

    def resolve(self, context: ValidationContext) -> T:
        return resolve_policy(self.entries, context, self.default)

    def copy(self) -> '_PolicyTable[T]':
        result = _PolicyTable(self.default)
        result.entries = dict(self.entries)
        return result


def _default_required_extensions() -> Dict[
    CertificateOrigin, List[CertificateExtension]
]:
    return {
        CertificateOrigin.SIGNER_CERT: [
            KeyUsageExtension(KeyUsage.NON_REPUDIATION)
        ],
        CertificateOrigin.CERT_ISSUER: [
            KeyUsageExtension(KeyUsage.KEY_CERT_SIGN),
            DynamicBasicConstraintsExtension(),
        ],
        CertificateOrigin.CRL_ISSUER: [KeyUsageExtension(KeyUsage.CRL_SIGN)],
        CertificateOrigin.OCSP_ISSUER: [
            ExtendedKeyUsageExtension([OCSP_SIGNING])
        ],
        CertificateOrigin.TIMESTAMP: [
            ExtendedKeyUsageExtension([TIME_STAMPING])
        ],
    }


class SignatureValidationProperties:
    """
    Policy table consulted by all validators.

    A fresh instance carries the built-in defaults, which can be overridden
    per pattern. All setters return ``self`` so calls can be chained.

    :param with_defaults:
        Register the built-in freshness and required extension policies.
        If ``False``, the tables start out empty and only the global
        fallback values apply.
    """

    def __init__(self, with_defaults: bool = True):
        self._continue_after_failure: _PolicyTable[bool] = _PolicyTable(
            DEFAULT_CONTINUE_AFTER_FAILURE
        )
        self._freshness: _PolicyTable[timedelta] = _PolicyTable(
            DEFAULT_FRESHNESS_PRESENT
        )
        self._required_extensions: _PolicyTable[
            Tuple[CertificateExtension, ...]
        ] = _PolicyTable(())
        self._online_fetching: _PolicyTable[OnlineFetching] = _PolicyTable(
            DEFAULT_ONLINE_FETCHING
        )
        if with_defaults:
            self.set_freshness(
                DEFAULT_FRESHNESS_PRESENT, time_modes=TimeMode.PRESENT
            )
            self.set_freshness(
                DEFAULT_FRESHNESS_HISTORICAL, time_modes=TimeMode.HISTORICAL
            )
            for origin, exts in _default_required_extensions().items():
                self.set_required_extensions(exts, certificate_origins=origin)

    def set_continue_after_failure(
        self, value: bool, *, certificate_origins=None, validator_stages=None,
        time_modes=None,
    ) -> 'SignatureValidationProperties':
        self._continue_after_failure.set(
            ContextPattern.of(
                certificate_origins, validator_stages, time_modes
            ),
            bool(value),
        )
        return self

    def set_freshness(
        self, freshness: timedelta, *, certificate_origins=None,
        validator_stages=None, time_modes=None,
    ) -> 'SignatureValidationProperties':
        if freshness < timedelta(0):
            raise ValueError("Freshness must not be negative.")
        self._freshness.set(
            ContextPattern.of(
                certificate_origins, validator_stages, time_modes
            ),
            freshness,
        )
        return self

    def set_required_extensions(
        self, extensions: Iterable[CertificateExtension], *,
        certificate_origins=None, validator_stages=None, time_modes=None,
    ) -> 'SignatureValidationProperties':
        self._required_extensions.set(
            ContextPattern.of(
                certificate_origins, validator_stages, time_modes
            ),
            tuple(extensions),
        )
        return self

    def set_revocation_online_fetching(
        self, online_fetching: OnlineFetching, *, certificate_origins=None,
        validator_stages=None, time_modes=None,
    ) -> 'SignatureValidationProperties':
        self._online_fetching.set(
            ContextPattern.of(
                certificate_origins, validator_stages, time_modes
            ),
            OnlineFetching(online_fetching),
        )
        return self

    def get_continue_after_failure(self, context: ValidationContext) -> bool:
        return self._continue_after_failure.resolve(context)

    def get_freshness(self, context: ValidationContext) -> timedelta:
        return self._freshness.resolve(context)

    def get_required_extensions(
        self, context: ValidationContext
    ) -> List[CertificateExtension]:
        return list(self._required_extensions.resolve(context))

    def get_revocation_online_fetching(
        self, context: ValidationContext
    ) -> OnlineFetching:
        return self._online_fetching.resolve(context)

    def copy(self) -> 'SignatureValidationProperties':
        result = SignatureValidationProperties(with_defaults=False)
        result._continue_after_failure = self._continue_after_failure.copy()
        result._freshness = self._freshness.copy()
        result._required_extensions = self._required_extensions.copy()
        result._online_fetching = self._online_fetching.copy()
        return result
