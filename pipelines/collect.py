"""CLI: run a collection cycle, rebuild accumulated insights, or print the market summary."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from app.config import settings
from app.models.source import SourcePurpose
from app.services.ingestion.errors import IngestionError
from app.services.ingestion.runtime import MarketSignalService, build_market_signal_service

logger = logging.getLogger("pipelines.collect")


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Market Signal ingestion and accumulation.")
    parser.add_argument(
        "--sources",
        type=Path,
        default=Path(settings.news_sources_path),
        help="Path to the JSON source registry.",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write the JSON result here instead of stdout.")
    subcommands = parser.add_subparsers(dest="command", required=True)

    collect = subcommands.add_parser("collect", help="Run one collection cycle.")
    collect.add_argument("--force", action="store_true", help="Ignore per-source minimum fetch intervals.")
    collect.add_argument(
        "--purpose",
        choices=[purpose.value for purpose in SourcePurpose],
        default=None,
        help="Only use sources serving this purpose.",
    )
    collect.add_argument(
        "--with-insights",
        action="store_true",
        help="Rebuild accumulated insights after the cycle.",
    )

    subcommands.add_parser("insights", help="Rebuild accumulated insights from the entity store.")

    summary = subcommands.add_parser("summary", help="Print the funding/company/technology summary.")
    summary.add_argument("--days", type=int, default=30, help="Trailing window in days.")
    return parser.parse_args(argv)


async def _run_collect(service: MarketSignalService, args: argparse.Namespace) -> dict[str, Any]:
    purpose = SourcePurpose(args.purpose) if args.purpose else None
    result = await service.collect(purpose=purpose, force=args.force)
    payload: dict[str, Any] = {"cycle": result.as_dict()}
    if args.with_insights:
        payload["insights"] = service.engine.build_insights(force=True).model_dump(mode="json")
    return payload


def run(args: argparse.Namespace, service: MarketSignalService | None = None) -> dict[str, Any]:
    service = service or build_market_signal_service(sources_path=args.sources)
    if args.command == "collect":
        return asyncio.run(_run_collect(service, args))
    if args.command == "insights":
        return service.engine.build_insights(force=True).model_dump(mode="json")
    return service.market_summary(days=args.days).model_dump(mode="json")


def _write(payload: dict[str, Any], output: Path | None) -> None:
    rendered = json.dumps(payload, indent=2, sort_keys=True)
    if output is None:
        sys.stdout.write(rendered + "\n")
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(rendered + "\n", encoding="utf-8")
    logger.info("collect.output_written", extra={"path": str(output)})


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        payload = run(args)
    except IngestionError as exc:
        logger.error("collect.failed", extra={"code": exc.code, "message": str(exc)})
        return 1
    _write(payload, args.output)
    warning = payload.get("cycle", {}).get("warning") if args.command == "collect" else None
    if warning:
        logger.warning("collect.completed_with_warning", extra={"warning": warning})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
