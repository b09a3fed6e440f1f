from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from dailies import ssm

from .orchestrator import ProductionOrchestrator, StudioConfig
from .pipeline.model import Phase, ProductionState

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plan, design and draft a short film from a one-line brief."
    )
    parser.add_argument("brief", help="One-line story brief for the director")
    parser.add_argument("--character", type=Path, help="Reference photo of the main character")
    parser.add_argument("--environment", type=Path, help="Reference photo of the location")
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional path to studio configuration JSON/YAML",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data/productions"),
        help="Directory for the production snapshot and exports",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an offline stand-in service instead of calling Gemini/Veo",
    )
    parser.add_argument("--critique", action="store_true", help="Score the dailies after drafting")
    parser.add_argument("--refine", action="store_true", help="Master every drafted shot")
    parser.add_argument("--export", action="store_true", help="Stitch the final cut and write captions")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


async def produce(orchestrator: ProductionOrchestrator, args: argparse.Namespace) -> ProductionState:
    state = await orchestrator.run(args.brief, args.character, args.environment)
    if state.phase is Phase.ERROR:
        return state
    if args.dry_run and (args.refine or args.export):
        logger.warning("Dry-run clips are placeholders; skipping mastering and export")
        return state
    if args.refine:
        state = await orchestrator.refine_all()
    if args.export:
        await orchestrator.export(args.output_dir)
    return orchestrator.state


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = StudioConfig.from_file(args.config) if args.config else StudioConfig()
    if args.critique and not args.dry_run:
        config = config.model_copy(update={"enable_critique": True})
    elif args.critique:
        logger.warning("Dry-run clips are placeholders; skipping critique")
    if not args.dry_run:
        ssm.hydrate_env(config.api_key_env, config.api_key_parameter)

    orchestrator = ProductionOrchestrator.default(config, dry_run=args.dry_run)
    state = asyncio.run(produce(orchestrator, args))

    args.output_dir.mkdir(parents=True, exist_ok=True)
    output_path = args.output_dir / "production.json"
    payload = state.model_dump(mode="json")
    output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote production snapshot to {output_path}")

    if state.phase is Phase.ERROR:
        print(f"Production failed: {state.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
