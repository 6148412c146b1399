"""Service layer: streaming, alerts, providers and the subscription facade."""

from .alert_service import Alert, AlertManager, AlertRule, AlertSeverity, AlertState
from .preferences import InMemoryPreferenceStore, PreferenceStore
from .providers import PriceQuote, ProviderPoller, adapt_history, adapt_quote
from .simulator import MarketSimulator, SubscriptionHandle
from .stream_engine import StreamEngine, SubscriptionConfig

__all__ = [
    "Alert",
    "AlertManager",
    "AlertRule",
    "AlertSeverity",
    "AlertState",
    "InMemoryPreferenceStore",
    "PreferenceStore",
    "PriceQuote",
    "ProviderPoller",
    "adapt_history",
    "adapt_quote",
    "MarketSimulator",
    "SubscriptionHandle",
    "StreamEngine",
    "SubscriptionConfig",
]
