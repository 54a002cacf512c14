#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the application.
Run this after setting up your .env file to ensure everything is configured correctly.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_env_file() -> bool:
    """Check if .env file exists."""
    env_path = project_root / ".env"
    exists = env_path.exists()
    if not exists:
        print_result(".env file", False, "File not found. Defaults will be used")
    else:
        print_result(".env file", True, "Found")
    return exists


def check_settings() -> bool:
    """Load Settings and validate the scheduling configuration."""
    try:
        from app.config import get_settings
        from app.core.scheduling.policy import AvailabilityPolicy

        cfg = get_settings()
    except Exception as e:
        print_result("Settings", False, str(e)[:80])
        return False

    ok = True
    try:
        ZoneInfo(cfg.authority_timezone)
        print_result("AUTHORITY_TIMEZONE", True, cfg.authority_timezone)
    except ZoneInfoNotFoundError:
        print_result("AUTHORITY_TIMEZONE", False, f"Unknown timezone '{cfg.authority_timezone}'")
        ok = False

    try:
        policy = AvailabilityPolicy.from_config(cfg.availability_windows, cfg.slot_step_minutes)
        days = ", ".join(policy.to_dict()["windows"]) or "none"
        print_result("AVAILABILITY_WINDOWS", True, f"Open on {days}")
    except ValueError as e:
        print_result("AVAILABILITY_WINDOWS", False, str(e)[:80])
        ok = False

    print_result("REMINDER_STATUSES", True, cfg.reminder_statuses)
    print_result("SMTP", cfg.smtp_configured, cfg.smtp_host or "Not set (emails are only logged)")

    staff_keys = os.getenv("STAFF_API_KEYS", "")
    print_result("STAFF_API_KEYS", bool(staff_keys), "Set" if staff_keys else "Not set (staff endpoints locked)")
    if not staff_keys:
        from app.api.middleware.auth import generate_api_key, hash_api_key

        api_key = generate_api_key()
        print("  Example admin key (give the key to staff, put the entry in .env):")
        print(f"    key:   {api_key}")
        print(f"    entry: STAFF_API_KEYS={hash_api_key(api_key)}:admin")
    return ok


async def check_database() -> bool:
    """Verify database connection."""
    from app.config import get_settings
    from app.infra.database import Database

    cfg = get_settings()
    if cfg.store_backend == "memory":
        print_result("Database", True, "Skipped - in-memory store")
        return True

    db = Database(cfg.database_url)
    try:
        await db.connect()
        healthy = await db.check_health()
        print_result("Database", healthy, "Connection successful" if healthy else "Connection failed")
        return healthy
    finally:
        await db.close()


async def check_redis() -> bool:
    """Verify Redis connection."""
    from app.config import get_settings
    from app.infra.redis import RedisClient

    client = RedisClient(get_settings().redis_url)
    try:
        healthy = await client.check_health()
        if healthy:
            print_result("Redis", True, "Connection successful")
        else:
            print_result("Redis", False, "Connection failed (reminders run at-least-once)")
        return healthy
    finally:
        await client.close()


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Church Appointments - Setup Verification")
    print("="*60)

    print_header("Environment File")
    check_env_file()

    print_header("Configuration")
    config_ok = check_settings()

    print_header("Service Connections")
    db_ok = await check_database() if config_ok else False
    await check_redis()  # Non-critical

    print_header("Summary")
    if not (config_ok and db_ok):
        print("\n  \033[91mCRITICAL: Configuration or database checks failed.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1

    print("\n  \033[92mAll required checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
