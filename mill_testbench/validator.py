"""Success-marker validation of captured script output."""

from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of checking an output against the required patterns."""

    passed: bool
    missing: Tuple[str, ...] = ()
    found: Tuple[str, ...] = ()


def validate_output(output: str, required_patterns: Iterable[str]) -> ValidationResult:
    """Check that every required pattern occurs in ``output``.

    Patterns are literal, case-sensitive substrings. Where and how often they
    occur does not matter. Missing patterns keep their configured order.
    """
    text = output or ""
    found = []
    missing = []
    for pattern in required_patterns:
        if pattern in text:
            found.append(pattern)
        else:
            missing.append(pattern)
    return ValidationResult(passed=not missing, missing=tuple(missing), found=tuple(found))
