import json
import logging
import time
from typing import Any, Dict

STEP_LOGGER = "twstock_gateway.steps"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_step(step: str, payload: Dict[str, Any], level: int = logging.INFO) -> None:
    entry = {"ts": time.time(), "step": step, "payload": payload}
    logging.getLogger(STEP_LOGGER).log(level, json.dumps(entry, ensure_ascii=False, default=str))
