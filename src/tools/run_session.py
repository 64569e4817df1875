import argparse
import asyncio
import logging
import sys
from pathlib import Path

from coursepilot.config import load_settings
from coursepilot.session import EXIT_FATAL, Session, SessionOptions


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Log in to a Moodle course page and work through its quiz or VPL task.")
    parser.add_argument("url", nargs="?", help="target quiz or VPL page")
    parser.add_argument("more_urls", nargs="*", help="further pages, processed in order after the first")
    parser.add_argument("--ask-llm", action="store_true", default=False, help="answer with the model (display only otherwise)")
    parser.add_argument("--visible", action="store_true", default=False, help="show the browser window")
    parser.add_argument("--debug-from", type=Path, help="run against a saved HTML snapshot, skipping login")
    parser.add_argument("--manual-login", action="store_true", default=False, help="wait on unknown login pages (2FA)")
    parser.add_argument("--username")
    parser.add_argument("--password")
    parser.add_argument("--auto-submit", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--continuation-prompts", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--stop-hook")
    parser.add_argument("--llm-retries", type=int)
    parser.add_argument("--api-retries", type=int)
    parser.add_argument("--button-click-retries", type=int)
    parser.add_argument("--max-consecutive-failures", type=int)
    parser.add_argument("--model", dest="llm_model")
    parser.add_argument("--log-dir")
    return parser


def main(argv: list[str]) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.url is None and args.debug_from is None:
        parser.error("a URL or --debug-from is required")

    try:
        settings = load_settings(
            {
                "username": args.username,
                "password": args.password,
                "auto_submit": args.auto_submit,
                "continuation_prompts": args.continuation_prompts,
                "stop_hook": args.stop_hook,
                "llm_retries": args.llm_retries,
                "api_retries": args.api_retries,
                "button_click_retries": args.button_click_retries,
                "max_consecutive_failures": args.max_consecutive_failures,
                "llm_model": args.llm_model,
                "log_dir": args.log_dir,
                "visible": args.visible,
            }
        )
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FATAL

    urls = [args.url] if args.url else []
    urls.extend(args.more_urls)
    options = SessionOptions(
        urls=urls,
        ask_llm=args.ask_llm,
        semi_manual=args.manual_login,
        debug_from=args.debug_from,
    )
    return asyncio.run(Session(settings, options).run())


def _entry() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
