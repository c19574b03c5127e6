"""
Compensating rollback across independently-failable stores.

A rollback is an ordered list of actions. Each one runs regardless of how
the previous ones went, and each outcome is logged on its own line so an
external reconciliation job can find anything left behind.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensatingAction:
    """A named undo step, e.g. ("delete_profile", lambda: ...)."""
    name: str
    run: Callable[[], object]


@dataclass(frozen=True)
class CompensationOutcome:
    name: str
    succeeded: bool
    error: Optional[str] = None


def run_compensations(
    actions: list[CompensatingAction],
    context: Optional[dict] = None,
) -> list[CompensationOutcome]:
    """
    Execute every action in order and report each outcome.

    Never short-circuits and never raises: the caller already has a
    definitive failure to return.
    """
    context = context or {}
    outcomes: list[CompensationOutcome] = []

    for action in actions:
        try:
            action.run()
        except Exception as e:
            logger.error(
                "Compensating action failed",
                extra={**context, "action": action.name, "error": str(e)},
                exc_info=e,
            )
            outcomes.append(CompensationOutcome(name=action.name, succeeded=False, error=str(e)))
            continue

        logger.info(
            "Compensating action succeeded",
            extra={**context, "action": action.name}
        )
        outcomes.append(CompensationOutcome(name=action.name, succeeded=True))

    return outcomes
