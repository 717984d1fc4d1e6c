"""
Guard rules.

A rule is anything with an ``evaluate(context) -> bool`` method. Rules
should be side-effect free; they may be evaluated for several candidate
transitions during a single ``apply`` call.
"""

from typing import Callable, Protocol, Sequence, runtime_checkable

from entitystate.types import ExecutionContext


@runtime_checkable
class Rule(Protocol):
    def evaluate(self, context: ExecutionContext) -> bool:
        ...


class TrueRule:
    """Always allows the transition."""

    def evaluate(self, context: ExecutionContext) -> bool:
        return True

    def __repr__(self):
        return "TrueRule()"


class FalseRule:
    """Never allows the transition."""

    def evaluate(self, context: ExecutionContext) -> bool:
        return False

    def __repr__(self):
        return "FalseRule()"


class CallableRule:
    """
    Adapt a plain function to the Rule capability.

    The function receives the ExecutionContext and its return value is
    coerced to bool.
    """

    def __init__(self, func: Callable[[ExecutionContext], object]):
        self.func = func

    def evaluate(self, context: ExecutionContext) -> bool:
        return bool(self.func(context))

    def __repr__(self):
        return f"CallableRule({getattr(self.func, '__qualname__', self.func)!r})"


class AllRules:
    """True only when every wrapped rule is true. Stops at the first false."""

    def __init__(self, rules: Sequence[Rule]):
        self.rules = list(rules)

    def evaluate(self, context: ExecutionContext) -> bool:
        return all(rule.evaluate(context) for rule in self.rules)

    def __repr__(self):
        return f"AllRules({self.rules!r})"
