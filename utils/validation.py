"""Pre-deploy validation for the n8n stack tools.

A :class:`ValidationRegistry` holds named checks. Each check receives a
shared context (for ``manage_stack validate`` the :class:`StackManager`)
and returns the :class:`ValidationIssue` list it found; an empty list means
the check passed. Results are gathered into a :class:`ValidationResult`.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class ValidationIssue:
    """One problem found by a check.

    Attributes:
        check_name: Registry name of the check that raised it.
        severity:   'error' blocks a deploy; 'warning' and 'info' do not.
        detail:     Message shown to the operator.
        target:     Variable, file or service the issue is about, if any.
    """

    check_name: str
    severity: str
    detail: str
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"check": self.check_name, "severity": self.severity, "detail": self.detail}
        if self.target:
            d["target"] = self.target
        return d


@dataclass
class ValidationResult:
    """Issues plus the pass/fail outcome of each check, in run order."""

    issues: List[ValidationIssue] = field(default_factory=list)
    outcomes: Dict[str, bool] = field(default_factory=dict)

    @property
    def passed_checks(self) -> List[str]:
        return [name for name, ok in self.outcomes.items() if ok]

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, ok in self.outcomes.items() if not ok]

    def count(self, severity: str) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    def is_valid(self) -> bool:
        """True when no check reported an error."""
        return self.count("error") == 0

    def summary_text(self) -> str:
        total = len(self.outcomes)
        return (f"{len(self.failed_checks)} of {total} check(s) failed "
                f"({self.count('error')} error(s), {self.count('warning')} warning(s))")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.is_valid(),
            "checks": dict(self.outcomes),
            "issues": [i.to_dict() for i in self.issues],
        }


class ValidationRegistry:
    """Named checks, run in registration order."""

    def __init__(self):
        self.checks: Dict[str, Callable[[Any], List[ValidationIssue]]] = {}

    def register(self, name: str, check_fn: Callable[[Any], List[ValidationIssue]]) -> None:
        self.checks[name] = check_fn

    def run_all(self, context: Any) -> ValidationResult:
        """Run every registered check against *context*.

        A check that raises ``OSError`` (missing ``.env``, unreadable stack
        file) or ``ValueError`` (bad stack file) is recorded as a failed
        check with one error issue rather than aborting the run.
        """
        result = ValidationResult()

        for name, check_fn in self.checks.items():
            try:
                issues = list(check_fn(context))
            except (OSError, ValueError) as exc:
                issues = [ValidationIssue(name, "error", str(exc))]

            result.issues.extend(issues)
            failed = any(i.severity == "error" for i in issues)
            result.outcomes[name] = not failed

        return result
