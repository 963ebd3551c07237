import json
import logging
from datetime import datetime, timezone


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def mask_identity(identity_id: str | None) -> str | None:
    if not identity_id:
        return identity_id
    local, sep, domain = identity_id.partition("@")
    if not sep:
        return f"{local[:1]}***"
    return f"{local[:1]}***@{domain}"


def log_action(
    logger: logging.Logger,
    module: str,
    action: str,
    identity_id: str | None,
    role: str | None,
    outcome: str,
    item_id: str | None = None,
    trace_id: str | None = None,
) -> None:
    logger.info(
        json.dumps(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "level": "INFO",
                "module": module,
                "action": action,
                "identity": mask_identity(identity_id),
                "role": role,
                "item_id": item_id,
                "trace_id": trace_id,
                "outcome": outcome,
            }
        )
    )
