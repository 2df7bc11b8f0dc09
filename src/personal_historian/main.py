"""Main entry point for running the Personal Historian bot."""

import asyncio
import logging
import signal
import sys
from collections.abc import Iterator
from pathlib import Path

# Load environment variables from .env file before importing other modules
from dotenv import load_dotenv

load_dotenv(override=False)

from personal_historian.app import AppContext
from personal_historian.config import settings
from personal_historian.config.loader import get_yaml_defaults
from personal_historian.config.llm_factory import validate_llm_config
from personal_historian.logging import configure_logging, format_log_context
from personal_historian.utils.timeutils import is_valid_timezone

logger = logging.getLogger(__name__)

MARKS = {"ok": "✓", "warn": "⚠", "error": "✗", "info": " "}


def _verify_checks() -> Iterator[tuple[str, str]]:
    """Yield ``(level, line)`` pairs for the configuration report."""
    yield "ok", f"config.yaml: {len(get_yaml_defaults())} keys"

    for name, value in (("DATA_ROOT", settings.DATA_ROOT), ("STATE_DB_PATH", settings.STATE_DB_PATH)):
        exists = Path(value).exists() or Path(value).parent.exists()
        yield ("ok" if exists else "info"), f"{name}: {value}" + ("" if exists else " (will be created)")

    try:
        validate_llm_config()
    except ValueError as e:
        yield "warn", f"LLM config: {e} (replies will use fallback text)"
    else:
        yield "ok", f"LLM provider: {settings.DEFAULT_LLM_PROVIDER}"

    if not settings.TELEGRAM_BOT_TOKEN:
        yield "error", "TELEGRAM_BOT_TOKEN is not set"
    else:
        yield "ok", "TELEGRAM_BOT_TOKEN configured"

    allowed = settings.allowed_user_ids
    if allowed:
        yield "ok", f"Allowed users: {len(allowed)}"
    else:
        yield "warn", "TELEGRAM_ALLOWED_USER_IDS is empty (everyone allowed)"

    if is_valid_timezone(settings.DEFAULT_TIMEZONE):
        yield "ok", f"Default timezone: {settings.DEFAULT_TIMEZONE}"
    else:
        yield "error", f"Unknown DEFAULT_TIMEZONE: {settings.DEFAULT_TIMEZONE}"

    yield "ok", (
        f"Check-ins: poll={settings.CHECKIN_POLL_SECONDS}s "
        f"default={settings.CHECKIN_DEFAULT_MINUTES}m retry={settings.CHECKIN_RETRY_MINUTES}m"
    )


def config_verify() -> int:
    """Print a configuration report. Returns 1 if any check is an error."""
    print("Personal Historian configuration")
    print("-" * 40)

    problems: dict[str, list[str]] = {"error": [], "warn": []}
    for level, line in _verify_checks():
        print(f"{MARKS[level]} {line}")
        if level in problems:
            problems[level].append(line)

    print("-" * 40)
    if problems["error"]:
        print(f"FAILED: {len(problems['error'])} error(s)")
        print("\n".join(f"  - {line}" for line in problems["error"]))
        return 1

    summary = f"OK with {len(problems['warn'])} warning(s)" if problems["warn"] else "OK"
    print(summary)
    return 0


async def main() -> None:
    """Run the bot until SIGINT/SIGTERM."""
    configure_logging()
    ctx = format_log_context("system", component="startup")

    try:
        validate_llm_config()
    except ValueError as e:
        logger.warning(f"{ctx} llm_unavailable, using fallback replies: {e}")

    try:
        app = AppContext()
    except ValueError as e:
        logger.error(f"{ctx} {e}")
        print(f"\n{e}\nSet TELEGRAM_BOT_TOKEN in .env or the environment.")
        sys.exit(1)

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)

    await app.start()
    print("Personal Historian is running. Ctrl+C to stop.", flush=True)
    try:
        await stopping.wait()
    finally:
        await app.stop()
        logger.info(f"{format_log_context('system', component='shutdown')} complete")


USAGE = """usage: personal-historian [run | config verify]

  run             start the bot (default)
  config verify   print a configuration report"""


def run_main() -> None:
    """Console script entry point."""
    args = [arg.lower() for arg in sys.argv[1:]]

    if args == ["config", "verify"]:
        sys.exit(config_verify())
    if args not in ([], ["run"]):
        print(USAGE)
        sys.exit(2)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run_main()
