"""
Event-driven entrypoint for externally scheduled refresh ticks.

Lets a cron-style trigger (EventBridge Scheduler, a Kubernetes CronJob, ...)
run a single tick without the FastAPI process and its in-process scheduler.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from linkrefresh.config.settings import settings
from linkrefresh.jobs.refresh_tick import parse_record_ids, run_refresh_tick
from linkrefresh.orchestrator_refresh import RefreshOrchestrator

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SUPPORTED_ACTIONS = ("tick",)


def lambda_handler(
    event: Optional[Dict[str, Any]],
    context: Any,
    *,
    orchestrator: Optional[RefreshOrchestrator] = None,
) -> Dict[str, Any]:
    """
    Run one refresh tick.

    Expected event payloads:
    - {"action": "tick"}
    - {"action": "tick", "record_ids": [1, 2, 3]}  (or "1,2,3")

    Returns:
        Dictionary with statusCode, action, and the tick result
    """
    payload = event or {}
    action = payload.get("action", "tick")
    logger.info(f"Refresh handler invoked with action: {action}")

    if action not in SUPPORTED_ACTIONS:
        error_msg = f"Unknown action: {action}"
        logger.error(error_msg)
        return {
            "statusCode": 400,
            "action": action,
            "error": error_msg,
        }

    try:
        result = asyncio.run(
            run_refresh_tick(
                orchestrator=orchestrator,
                record_ids=parse_record_ids(payload.get("record_ids")),
            )
        )
    except Exception as e:
        logger.error(f"Refresh tick failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "action": action,
            "error": str(e),
        }

    return {
        "statusCode": 200 if result.get("success", False) else 500,
        "action": action,
        "result": result,
    }


# Allow local runs via `python -m linkrefresh.handler`
if __name__ == "__main__":
    print(lambda_handler({"action": "tick"}, None))
