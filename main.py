#!/usr/bin/env python3
"""
Apple Store Watch - in-store pickup availability monitor

Watches (area, store, product) combinations on the Apple Store and alerts
with a sound and a push notification when one becomes available for pickup.
"""

import argparse
import shlex
import sys
from typing import List, Optional

from config import APP_CONFIG
from engine import WatchEngine
from errors import NotFoundError, ValidationError
from lifecycle import RunState
from logging_config import RecentLogHandler, setup_logging
from utils import format_duration

HELP_TEXT = """
Commands:
  start                          resume watching
  pause                          pause watching
  status                         show state and the last tick
  list                           show the watch list
  areas                          list areas
  stores [AREA]                  list stores of an area
  products [AREA]                list products of an area
  area AREA                      switch area (empties the watch list)
  add STORE PRODUCT [URL]        watch a product at a store of the current area
  remove N                       stop watching item N of the list
  url [ENDPOINT]                 show or set the push endpoint
  clean                          empty the watch list
  sound                          preview the alert sound
  test [ENDPOINT]                send a test push notification
  log [N]                        show the last N log lines
  help                           show this help
  quit                           stop and exit

Titles containing spaces must be quoted, e.g.
  add "Apple Fifth Avenue" "iPhone 16 Pro 128GB Black Titanium"
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watch Apple Store pickup availability and alert when a product is in stock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start watching with the saved watch list and an interactive console
  python main.py

  # Show what can be watched in an area
  python main.py --stores "United States"
  python main.py --products "United States"

  # Add an item with a push endpoint, then run a single check
  python main.py --add "United States" "Apple Fifth Avenue" "iPhone 16 128GB Ultramarine" \\
      --notify-url https://api.day.app/YOUR_KEY
  python main.py --once

  # Run with file logging
  python main.py --log-file logs/apple_store_watch.log
        """
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-file",
        help="Path to log file (logs to console if not specified)"
    )
    parser.add_argument(
        "--paused",
        action="store_true",
        help="Start with watching paused"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check of the watch list and exit"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Show the saved watch list and exit"
    )
    parser.add_argument(
        "--areas",
        action="store_true",
        help="List the areas of the catalog and exit"
    )
    parser.add_argument(
        "--stores",
        metavar="AREA",
        help="List the stores of an area and exit"
    )
    parser.add_argument(
        "--products",
        metavar="AREA",
        help="List the products of an area and exit"
    )
    parser.add_argument(
        "--add",
        nargs=3,
        metavar=("AREA", "STORE", "PRODUCT"),
        help="Add a watch item and exit"
    )
    parser.add_argument(
        "--notify-url",
        help="Push endpoint used by --add and --test-notification"
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Empty the watch list and exit"
    )
    parser.add_argument(
        "--preview-sound",
        action="store_true",
        help="Play the alert sound and exit"
    )
    parser.add_argument(
        "--test-notification",
        action="store_true",
        help="Send a test push notification and exit"
    )
    return parser


def print_items(engine: WatchEngine):
    items = engine.get_listen_items()
    if not items:
        print("Watch list is empty")
        return

    print(f"\nWatching {len(items)} items:")
    for index, item in enumerate(items, start=1):
        endpoint = f"  -> {item.notify_url}" if item.notify_url else ""
        print(f"  {index}. [{item.area_code}] {item.label}{endpoint}")


def print_titles(header: str, titles: List[str]):
    print(f"\n{header}:")
    for title in titles:
        print(f"  - {title}")


def print_status(engine: WatchEngine):
    print(f"Status: {engine.status}")
    print(f"Area:   {engine.selected_area.title}")
    print(f"Items:  {len(engine.get_listen_items())}")

    report = engine.last_report
    if report is not None:
        duration = report.duration_seconds
        took = f" in {format_duration(duration)}" if duration is not None else ""
        print(
            f"Last tick #{report.tick_number}{took}: "
            f"{report.items_checked} checked, {report.items_available} available, "
            f"{report.alerts_fired} alerts, {report.errors_encountered} errors"
        )


def run_one_shot(engine: WatchEngine, args: argparse.Namespace) -> Optional[int]:
    """
    Handle the one-shot flags.

    Returns:
        Exit code, or None when no one-shot flag was given
    """
    if args.areas:
        print_titles("Areas", engine.catalog.areas_for_options())
        return 0

    if args.stores:
        print_titles(f"Stores in {args.stores}", engine.catalog.stores_for_area(args.stores))
        return 0

    if args.products:
        print_titles(f"Products in {args.products}", engine.catalog.products_for_area(args.products))
        return 0

    if args.add:
        area, store, product = args.add
        item = engine.add(area, store, product, args.notify_url or "")
        print(f"✅ Watching {item.label}")
        return 0

    if args.clean:
        engine.clean()
        print("🧹 Watch list cleaned")
        return 0

    if args.list:
        print_items(engine)
        return 0

    if args.preview_sound:
        return 0 if engine.preview_sound() else 1

    if args.test_notification:
        if engine.test_notification(args.notify_url):
            print("✅ Test notification sent")
            return 0
        print("❌ Test notification failed, check the logs above")
        return 1

    if args.once:
        print("\n🔄 Running single check...")
        report = engine.run_once()
        if report is None:
            return 1
        print("\n✅ Check complete!")
        print(f"   Items checked:  {report.items_checked}")
        print(f"   Available:      {report.items_available}")
        print(f"   Alerts fired:   {report.alerts_fired}")
        print(f"   Errors:         {report.errors_encountered}")
        return 0

    return None


def handle_command(engine: WatchEngine, line: str) -> bool:
    """
    Execute one console command.

    Returns:
        False when the console should exit
    """
    try:
        words = shlex.split(line)
    except ValueError as e:
        print(f"Cannot parse command: {e}")
        return True

    if not words:
        return True

    command, args = words[0].lower(), words[1:]
    area_title = engine.selected_area.title

    try:
        if command in ("quit", "exit"):
            return False
        elif command == "help":
            print(HELP_TEXT)
        elif command == "start":
            engine.start_watching()
        elif command == "pause":
            engine.pause()
        elif command == "status":
            print_status(engine)
        elif command == "list":
            print_items(engine)
        elif command == "areas":
            print_titles("Areas", engine.catalog.areas_for_options())
        elif command == "stores":
            title = args[0] if args else area_title
            print_titles(f"Stores in {title}", engine.catalog.stores_for_area(title))
        elif command == "products":
            title = args[0] if args else area_title
            print_titles(f"Products in {title}", engine.catalog.products_for_area(title))
        elif command == "area":
            if not args:
                print(f"Current area: {area_title}")
            else:
                area = engine.select_area(args[0])
                print(f"Area: {area.title}")
        elif command == "add":
            store = args[0] if len(args) > 0 else ""
            product = args[1] if len(args) > 1 else ""
            notify_url = args[2] if len(args) > 2 else engine.notify_url
            item = engine.add(area_title, store, product, notify_url)
            print(f"✅ Watching {item.label}")
        elif command == "remove":
            items = engine.get_listen_items()
            try:
                item = items[int(args[0]) - 1]
            except (IndexError, ValueError):
                print("Usage: remove N (see 'list')")
            else:
                engine.remove(item.key)
                print(f"Removed {item.label}")
        elif command == "url":
            if args:
                engine.notify_url = args[0].strip()
                engine.save_settings()
            print(f"Push endpoint: {engine.notify_url or '(none)'}")
        elif command == "clean":
            engine.clean()
            print("🧹 Watch list cleaned")
        elif command == "sound":
            engine.preview_sound()
        elif command == "test":
            sent = engine.test_notification(args[0] if args else None)
            print("✅ Test notification sent" if sent else "❌ Test notification failed")
        elif command == "log":
            count = int(args[0]) if args and args[0].isdigit() else 20
            for log_line in engine.log_lines()[-count:]:
                print(log_line)
        else:
            print(f"Unknown command: {command} (type 'help')")
    except (ValidationError, NotFoundError) as e:
        print(f"❌ {e}")

    return True


def run_console(engine: WatchEngine, paused: bool) -> int:
    """Start the engine and read commands from stdin until quit."""
    unsubscribe = engine.subscribe(
        lambda state: print("▶️  Watching" if state is RunState.RUNNING else "⏸️  Paused")
    )

    engine.start(paused=paused or None)
    print("\n🚀 Apple Store Watch")
    print(f"   Area: {engine.selected_area.title}, {len(engine.get_listen_items())} items")
    print("   Type 'help' for commands, 'quit' or Ctrl+C to exit\n")

    try:
        for line in sys.stdin:
            if not handle_command(engine, line):
                break
    except KeyboardInterrupt:
        print("\n\n⏹️  Watching stopped by user")
    finally:
        unsubscribe()
        engine.stop()
        print("\n👋 Goodbye!")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the Apple Store watch application."""
    args = build_parser().parse_args(argv)

    log_buffer = RecentLogHandler(max_lines=APP_CONFIG.log_buffer_lines)
    logger = setup_logging(args.log_level, args.log_file, buffer_handler=log_buffer)

    try:
        engine = WatchEngine(APP_CONFIG, logger, log_buffer=log_buffer)
        engine.load_settings()
    except (OSError, ValueError) as e:
        print(f"\n❌ Error: {e}")
        logger.exception("Failed to initialize watch engine")
        return 1

    try:
        exit_code = run_one_shot(engine, args)
        if exit_code is not None:
            return exit_code
        return run_console(engine, args.paused)
    except (ValidationError, NotFoundError) as e:
        print(f"\n❌ {e}")
        return 2
    except Exception as e:
        print(f"\n❌ Error: {e}")
        logger.exception("Unexpected error in main")
        return 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
