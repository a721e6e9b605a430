# mlm_engine.py
"""
MLM Commission Engine - main entry point.
Loads configuration, prepares the database and runs the daily scheduler.
"""
import asyncio
import logging
import signal
import sys

from config import Config
from core.db import setup_database
from models.listeners import register_all_listeners

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('mlm_engine.log')
    ]
)

logger = logging.getLogger(__name__)


def initialize_engine():
    """
    Initialize configuration, database and listeners.

    Raises:
        ConfigurationError: If configuration is missing or inconsistent
    """
    try:
        logger.info("=" * 60)
        logger.info("MLM ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load configuration from .env
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        logger.info("✓ Configuration loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Validate critical configuration
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("🔍 Validating critical configuration keys...")
        Config.validate_critical_keys()
        logger.info("✓ Configuration validated")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Setup database
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 4: Setup MLM event handlers
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("🎲 Setting up MLM event handlers...")
        from mlm_system.events.setup import setup_mlm_event_handlers
        setup_mlm_event_handlers()
        logger.info("✓ MLM event handlers registered")

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def main():
    """Main entry point."""
    from background import mlm_scheduler
    from background.mlm_scheduler import MLMScheduler

    try:
        initialize_engine()

        mlm_scheduler.scheduler = MLMScheduler()
        await mlm_scheduler.scheduler.start()

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        logger.info("🔄 Engine running, waiting for scheduled jobs...")
        await stop_event.wait()

        await mlm_scheduler.scheduler.stop()

    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("👋 Engine shutdown complete")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped")
