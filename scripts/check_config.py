"""Print the effective fulfillment settings and Temporal connection mode."""

import os
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import load_settings
from temporal_client import DEFAULT_ENDPOINT


def check_config() -> bool:
    """Show settings; returns False when configuration is inconsistent."""
    settings = load_settings()
    ok = True

    print("\n" + "=" * 70)
    print("FULFILLMENT CONFIGURATION")
    print("=" * 70 + "\n")

    print(f"  Database:            {settings.db_path}")
    print(f"  Artifacts:           {settings.artifacts_dir}")
    print(f"  Weight tolerance:    {settings.weight_tolerance_kg} kg")
    print(f"  Amount tolerance:    {settings.amount_tolerance_pct} %")
    print(f"  Content tolerance:   {settings.content_tolerance_pct} %")
    print(f"  Invite token TTL:    {settings.invite_token_ttl_hours} h")
    print(f"  Task queue:          {settings.temporal_task_queue}")
    print(f"  Gate checklist:      {len(settings.gate_checklist)} items")
    for item in settings.gate_checklist:
        print(f"    - {item}")

    if settings.users:
        print(f"  Users:               {', '.join(f'{u} ({r})' for u, r in settings.users)}")
    else:
        print("  Users:               none (set FULFILLMENT_USERS=user:ROLE,...)")
        ok = False

    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")
    mode = "Temporal Cloud (TLS)" if api_key or cert_path else "local dev server"
    print(f"\n  Temporal:            {endpoint} [{mode}]")
    if cert_path and not key_path:
        print("  ✗ TEMPORAL_CERT_PATH is set without TEMPORAL_KEY_PATH")
        ok = False

    print("\n" + "=" * 70 + "\n")
    return ok


if __name__ == "__main__":
    sys.exit(0 if check_config() else 1)
