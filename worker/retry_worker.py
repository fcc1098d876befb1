import asyncio
import logging

from qms_webhooks.core.db import SessionLocal, engine
from qms_webhooks.services.runtime import build_runtime


log = logging.getLogger(__name__)

STATUS_LOG_SECONDS = 600


async def main():
    logging.basicConfig(level=logging.INFO)

    runtime = build_runtime(SessionLocal)
    runtime.retry_scheduler.start()
    log.info("retry worker: started")
    try:
        while True:
            await asyncio.sleep(STATUS_LOG_SECONDS)
            log.info("retry worker: %s", runtime.retry_scheduler.status())
    finally:
        await runtime.aclose()
        await engine.dispose()
        log.info("retry worker: stopped")


if __name__ == "__main__":
    asyncio.run(main())
