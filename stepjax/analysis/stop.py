"""Stop conditions.

A stop condition is any callable ``(model, new_state, previous_state) ->
bool`` evaluated after every accepted step. When one returns True the run
ends successfully with the triggering state as its last output; this is an
intentional early end (e.g. a voltage cutoff), not a failure.

Conditions built with the helpers below carry a ``name`` that ends up in
the run report:

    below("voltage", 3.0)          # voltage < 3.0
    above("soc", 0.95)             # soc > 0.95
    crosses("current", 0.0)        # current changes side of 0.0
    time_reached(7200.0)           # t >= 7200
    any_of(below("voltage", 3.0), above("voltage", 4.2))
"""

from typing import Any, Callable, Iterable, Optional

from stepjax.models.base import State

StopCondition = Callable[[Any, State, State], bool]


class NamedCondition:
    """Stop condition with a human-readable name."""

    def __init__(self, name: str, predicate: StopCondition):
        self.name = name
        self._predicate = predicate

    def __call__(self, model: Any, new_state: State, previous_state: State) -> bool:
        return bool(self._predicate(model, new_state, previous_state))

    def __repr__(self) -> str:
        return f"NamedCondition({self.name!r})"


def below(quantity: str, threshold: float) -> NamedCondition:
    """Fire when ``quantity`` drops strictly below ``threshold``."""
    return NamedCondition(
        f"{quantity} < {threshold:g}",
        lambda model, new, prev: new.quantity(quantity) < threshold,
    )


def above(quantity: str, threshold: float) -> NamedCondition:
    """Fire when ``quantity`` rises strictly above ``threshold``."""
    return NamedCondition(
        f"{quantity} > {threshold:g}",
        lambda model, new, prev: new.quantity(quantity) > threshold,
    )


def crosses(quantity: str, level: float) -> NamedCondition:
    """Fire when ``quantity`` moves from one side of ``level`` to the other."""

    def predicate(model: Any, new: State, prev: State) -> bool:
        before = prev.quantity(quantity) - level
        after = new.quantity(quantity) - level
        return (before < 0 <= after) or (before > 0 >= after)

    return NamedCondition(f"{quantity} crosses {level:g}", predicate)


def time_reached(t_end: float) -> NamedCondition:
    """Fire once the simulation time reaches ``t_end``."""
    return NamedCondition(f"time >= {t_end:g}", lambda model, new, prev: new.time >= t_end)


def any_of(*conditions: StopCondition) -> NamedCondition:
    """Fire when any of ``conditions`` fires."""
    names = " or ".join(condition_name(c) for c in conditions)
    return NamedCondition(
        f"({names})",
        lambda model, new, prev: any(c(model, new, prev) for c in conditions),
    )


def condition_name(condition: StopCondition) -> str:
    """Name used to report ``condition``."""
    name = getattr(condition, "name", None) or getattr(condition, "__name__", None)
    return name if name else repr(condition)


def evaluate_stop_conditions(
    conditions: Iterable[StopCondition],
    model: Any,
    new_state: State,
    previous_state: State,
) -> Optional[str]:
    """Evaluate stop conditions in order.

    Args:
        conditions: Conditions attached to the current control and the run
        model: Model being simulated
        new_state: State just accepted
        previous_state: State before the accepted step

    Returns:
        Name of the first condition that fired, or None
    """
    for condition in conditions:
        if condition(model, new_state, previous_state):
            return condition_name(condition)
    return None
