"""Change notification package."""

from cycle_ledger.services.notifier.broadcaster import (
    ChangeNotifier,
    Subscription,
)

__all__ = ["ChangeNotifier", "Subscription"]
