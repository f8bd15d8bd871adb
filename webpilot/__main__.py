"""
Command-line entry point: python -m webpilot "Go to example.com and read the page title"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

from .client import ChannelTransport, EventStreamClient
from .config import AutomationConfig
from .exceptions import WebPilotError, to_error_response
from .image_store import create_image_store
from .models import AutomationEvent, EventType
from .service import AutomationService

_EVENT_ICONS = {
    EventType.INFO: "ℹ️ ",
    EventType.SUCCESS: "✅",
    EventType.ERROR: "❌",
    EventType.SCREENSHOT: "📸",
    EventType.CONNECTED: "🔌",
}


def _print_event(event: AutomationEvent) -> None:
    icon = _EVENT_ICONS.get(event.type, "•")
    line = f"{icon} {event.message}"
    if event.type == EventType.SCREENSHOT and event.data:
        line += f" {event.data.get('screenshot_url')}"
    print(line)


async def _run(args: argparse.Namespace) -> int:
    overrides = {}
    if args.model:
        overrides["model"] = args.model
    if args.headless:
        overrides["headless"] = True
    if args.max_steps:
        overrides["max_steps"] = args.max_steps
    if args.quiet:
        overrides["verbose"] = False
    config = AutomationConfig.from_env(**overrides)

    image_store = create_image_store(
        upload_url=os.environ.get("WEBPILOT_UPLOAD_URL"),
        upload_preset=os.environ.get("WEBPILOT_UPLOAD_PRESET"),
        api_key=os.environ.get("WEBPILOT_UPLOAD_API_KEY"),
        directory=args.screenshots,
        timeout_s=config.upload_timeout_s,
    )
    service = AutomationService(config, image_store=image_store, mode=args.mode)

    try:
        session_id = await service.start({"prompt": args.prompt})
        client = EventStreamClient(
            ChannelTransport(service.channel),
            reconnect_delay_s=config.reconnect_delay_s,
            on_event=None if args.json else _print_event,
        )
        await client.listen(session_id)
        result = await service.wait(session_id)
    except WebPilotError as e:
        print(json.dumps(to_error_response(e), indent=2, default=str), file=sys.stderr)
        return 1
    finally:
        await service.close()

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        print(f"\n{'=' * 70}")
        print(f"Status: {result.status} (last policy: {result.last_policy})")
        if result.screenshot_url:
            print(f"Screenshot: {result.screenshot_url}")
        print(f"{'=' * 70}")
        print(result.final_output or "")
    return 0 if result.status == "completed" else 2


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run a natural-language browser task")
    parser.add_argument("prompt", help="Task, e.g. \"Go to example.com and read the page title\"")
    parser.add_argument(
        "--mode",
        choices=["gateway", "unified"],
        default="gateway",
        help="gateway routes to specialist policies; unified uses one policy with every tool",
    )
    parser.add_argument("--headless", action="store_true", help="Run the browser without a window")
    parser.add_argument("--model", help="LLM model name (default: WEBPILOT_MODEL or gpt-4o-mini)")
    parser.add_argument("--max-steps", type=int, help="Ceiling on LLM iterations per policy")
    parser.add_argument("--screenshots", default="screenshots", help="Local screenshot directory")
    parser.add_argument("--json", action="store_true", help="Print the run result as JSON")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress output")
    args = parser.parse_args()

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
