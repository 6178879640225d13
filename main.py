"""
docgate entry point.
Boots the SQL document store, the maintenance scheduler and the monitoring server.
"""

import asyncio

import uvicorn
from loguru import logger

from docgate.datastore.sql import SqlDocumentStore
from docgate.monitoring import create_monitoring_app
from docgate.runtime import Runtime
from docgate.scheduler import MaintenanceScheduler
from docgate.settings import global_settings


async def main() -> None:
    """Main function"""
    logger.info("Starting docgate...")

    store = SqlDocumentStore(
        global_settings.database_url, echo=global_settings.database_echo
    )
    runtime = Runtime.from_settings(store, global_settings)
    scheduler = MaintenanceScheduler(
        runtime,
        sweep_interval_seconds=global_settings.cache_sweep_interval,
        snapshot_interval_seconds=global_settings.metrics_poll_interval,
    )

    try:
        logger.info("Initializing database...")
        await store.init()
        logger.info("Database initialized successfully")

        scheduler.start()

        health = await runtime.health.get_health_status()
        logger.info(f"Initial health: {health['status']}")

        config = uvicorn.Config(
            create_monitoring_app(runtime),
            host=global_settings.monitor_host,
            port=global_settings.monitor_port,
            log_level="info",
        )
        logger.info(
            f"Monitoring endpoint on http://{global_settings.monitor_host}:"
            f"{global_settings.monitor_port}"
        )
        await uvicorn.Server(config).serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        if scheduler.is_running():
            scheduler.stop()

        logger.info("Closing runtime...")
        await runtime.close()

        logger.info("docgate stopped")


if __name__ == "__main__":
    asyncio.run(main())
