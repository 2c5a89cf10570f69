"""``flowtrace`` command line: compile saved traces, record live pages."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from flowtrace.compiler.compiler import WorkflowCompiler
from flowtrace.compiler.export import interpretation_to_dict, ir_to_dicts
from flowtrace.compiler.flatten import DEFAULT_START_URL
from flowtrace.compiler.interpreter import TraceInterpreter
from flowtrace.config import SCREENSHOT_MODES, load_config
from flowtrace.core.errors import FlowTraceError
from flowtrace.core.serialize import steps_from_json

log = logging.getLogger(__name__)

COMPILE_MODES = ("ir", "graph", "both")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowtrace", description=__doc__)
    parser.add_argument("--config", help="path to a flowtrace.toml file")
    parser.add_argument("--log-level", default="WARNING", help="logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    compile_cmd = sub.add_parser("compile", help="compile a saved trace into a workflow")
    compile_cmd.add_argument("trace", help="trace JSON file ('-' for stdin)")
    compile_cmd.add_argument("--mode", choices=COMPILE_MODES, default="ir")
    compile_cmd.add_argument("--url", default=None, help="start URL for the workflow")
    compile_cmd.add_argument("--screenshot-mode", choices=SCREENSHOT_MODES, default=None)

    record_cmd = sub.add_parser("record", help="record interactions on a live page")
    record_cmd.add_argument("url")
    record_cmd.add_argument("--duration-ms", type=float, default=30_000.0)
    record_cmd.add_argument("--headless", action="store_true")
    record_cmd.add_argument("--mode", choices=("ir", "graph"), default=None,
                            help="also compile the recorded trace")
    return parser


def _read_trace(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def compile_trace(
    text: str,
    mode: str = "ir",
    url: str | None = None,
    screenshot_mode: str | None = None,
    config=None,
) -> Any:
    steps = steps_from_json(text)
    start_url = url or DEFAULT_START_URL
    result: dict[str, Any] = {}
    if mode in ("ir", "both"):
        compiler = WorkflowCompiler(config, screenshot_mode=screenshot_mode)
        result["ir"] = ir_to_dicts(compiler.compile(start_url, steps))
    if mode in ("graph", "both"):
        interpreter = TraceInterpreter(config)
        result["graph"] = interpretation_to_dict(interpreter.interpret(steps, start_url))
    if mode == "both":
        return result
    return result[mode]


async def record_page(url: str, duration_ms: float, headless: bool, mode: str | None, config) -> dict[str, Any]:
    from playwright.async_api import async_playwright

    from flowtrace.dom.playwright import PlaywrightHost

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        try:
            page = await browser.new_page()
            await page.goto(url)
            host = PlaywrightHost(page, config)
            await host.attach()
            host.controller.start_recording()
            await host.run(duration_ms)
            host.controller.stop_recording()
            return host.controller.get_trace(compile=mode).to_dict()
        finally:
            await browser.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config)
        if args.command == "compile":
            output = compile_trace(
                _read_trace(args.trace),
                mode=args.mode,
                url=args.url,
                screenshot_mode=args.screenshot_mode,
                config=config,
            )
        else:
            output = asyncio.run(record_page(args.url, args.duration_ms, args.headless, args.mode, config))
    except (FlowTraceError, OSError, ValueError) as exc:
        log.error("%s", exc)
        print(f"flowtrace: {exc}", file=sys.stderr)
        return 1

    json.dump(output, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
