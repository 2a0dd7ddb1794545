"""Runtime configuration loaded from the environment.

Values are read once from environment variables (optionally populated from
a ``.env`` file at the repository root) into an immutable ``Settings``
object. Components receive the settings they need explicitly; nothing in
the core reads the environment on its own.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


# Fixed outbound gate checklist used by the warehouse
DEFAULT_GATE_CHECKLIST: Tuple[str, ...] = (
    "거래내역서 확인",
    "검수확인서 확인",
    "품목/수량 일치 확인",
    "포장상태 확인",
    "냉장/냉동 온도 확인",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_users(raw: str) -> Tuple[Tuple[str, str], ...]:
    pairs = []
    for entry in raw.split(","):
        user_id, _, role = entry.strip().partition(":")
        if user_id and role:
            pairs.append((user_id.strip(), role.strip().upper()))
    return tuple(pairs)


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


@dataclass(frozen=True)
class Settings:
    """Application settings.

    Attributes:
        db_path: SQLite database file for the repository
        artifacts_dir: Directory for signature artifacts and audit files
        weight_tolerance_kg: Absolute weight tolerance for line matching
        amount_tolerance_pct: Relative amount tolerance (percent) for line matching
        content_tolerance_pct: Relative tolerance (percent) for ordered-vs-shipped weight
        invite_token_ttl_hours: Lifetime of a customer invite token
        gate_checklist: Checklist items that must all be checked at the gate
        log_level: Root log level name
        log_json: Emit JSON log lines instead of human-readable ones
        temporal_task_queue: Task queue for fulfillment activities
        users: (user_id, role) pairs for the static identity provider
    """
    db_path: Path = REPO_ROOT / "fulfillment.db"
    artifacts_dir: Path = REPO_ROOT / "artifacts"
    weight_tolerance_kg: Decimal = Decimal("0.05")
    amount_tolerance_pct: Decimal = Decimal("1")
    content_tolerance_pct: Decimal = Decimal("10")
    invite_token_ttl_hours: int = 72
    gate_checklist: Tuple[str, ...] = field(default=DEFAULT_GATE_CHECKLIST)
    log_level: str = "INFO"
    log_json: bool = False
    temporal_task_queue: str = "fulfillment-default"
    users: Tuple[Tuple[str, str], ...] = ()


def load_settings() -> Settings:
    """Build settings from environment variables.

    Environment variables:
    - FULFILLMENT_DB_PATH
    - ARTIFACTS_DIR
    - WEIGHT_TOLERANCE_KG (default 0.05)
    - AMOUNT_TOLERANCE_PCT (default 1)
    - CONTENT_TOLERANCE_PCT (default 10)
    - INVITE_TOKEN_TTL_HOURS (default 72)
    - GATE_CHECKLIST (comma separated item names)
    - LOG_LEVEL, LOG_JSON
    - TEMPORAL_TASK_QUEUE
    - FULFILLMENT_USERS (comma separated user_id:ROLE pairs)
    """
    checklist_raw: Optional[str] = os.getenv("GATE_CHECKLIST")
    if checklist_raw:
        checklist = tuple(item.strip() for item in checklist_raw.split(",") if item.strip())
    else:
        checklist = DEFAULT_GATE_CHECKLIST

    return Settings(
        db_path=Path(os.getenv("FULFILLMENT_DB_PATH", str(REPO_ROOT / "fulfillment.db"))),
        artifacts_dir=Path(os.getenv("ARTIFACTS_DIR", str(REPO_ROOT / "artifacts"))),
        weight_tolerance_kg=_env_decimal("WEIGHT_TOLERANCE_KG", "0.05"),
        amount_tolerance_pct=_env_decimal("AMOUNT_TOLERANCE_PCT", "1"),
        content_tolerance_pct=_env_decimal("CONTENT_TOLERANCE_PCT", "10"),
        invite_token_ttl_hours=int(os.getenv("INVITE_TOKEN_TTL_HOURS", "72")),
        gate_checklist=checklist,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("LOG_JSON", False),
        temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "fulfillment-default"),
        users=_parse_users(os.getenv("FULFILLMENT_USERS", "")),
    )
