"""
Market simulator demo runner.

Streams one simulated instrument with the background scheduler and logs
every tick and alert until interrupted.
"""

import sys
import time

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from marketsim.config.logging import get_logger
from marketsim.config.settings import get_settings
from marketsim.services import MarketSimulator, SubscriptionConfig
from marketsim.utils.config import initialize_application


def main() -> None:
    """Main application entry point."""
    initialize_application()

    logger = get_logger(__name__)
    settings = get_settings()

    def on_tick(snapshot):
        logger.info(
            "Tick",
            symbol=snapshot.symbol,
            timeframe=snapshot.timeframe.value,
            price=snapshot.current_price,
            trend=snapshot.trend.value,
            change_percent=snapshot.change_percent,
            points=len(snapshot.observations),
        )

    def on_alert(alert_state):
        if alert_state.active:
            logger.warning(
                "Alert",
                severity=alert_state.severity.value,
                title=alert_state.title,
                message=alert_state.message,
            )

    def on_error(error):
        logger.error("Provider error", error=error.message)

    overrides = {}
    if len(sys.argv) > 1:
        overrides["timeframe"] = sys.argv[1]

    simulator = MarketSimulator(settings=settings)
    config = SubscriptionConfig.from_settings(
        settings,
        tick_callback=on_tick,
        alert_callback=on_alert,
        error_callback=on_error,
        **overrides,
    )

    logger.info("Starting simulator", symbol=config.symbol, timeframe=str(config.timeframe))
    simulator.subscribe(config)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
        print("\nShutting down...")
    finally:
        simulator.shutdown()


if __name__ == "__main__":
    main()
