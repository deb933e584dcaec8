"""
main.py — Command-line entry point.

  python main.py analyze photo1.jpg photo2.jpg --text "iPhone 13, 128GB"
  python main.py show <detection-id>
  python main.py list [--owner ID] [--status STATUS]

`analyze` runs category → identification, stops at the confidence gate if
the photos are not good enough, otherwise asks for confirmation (skip with
--yes) and then runs verification and pricing concurrently.
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import config

# Log file lives next to the database so one volume mount captures both.
_data_dir = Path(config.DATA_DIR)
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "analyzer.log"), encoding="utf-8"),
    ],
)
for _noisy in ("httpx", "httpcore", "aiohttp.access", "openai", "anthropic"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _ask_confirmation() -> bool:
    try:
        answer = input("Is this identification correct? [Y/n] ").strip().lower()
    except EOFError:
        return False
    return answer in ("", "y", "yes")


# ── Commands ──────────────────────────────────────────────────────────────────

async def cmd_analyze(args: argparse.Namespace) -> int:
    from image_store import ImageUpload, ImageValidationError
    from orchestrator import StageOrchestrator

    try:
        uploads = [ImageUpload.from_path(p) for p in args.images]
    except OSError as exc:
        logger.error("Cannot read image: %s", exc)
        return 2

    orch = StageOrchestrator()
    try:
        analysis = await orch.run_analysis(uploads, text=args.text, owner_id=args.owner)
    except ImageValidationError as exc:
        logger.error("Images rejected (%s): %s", exc.code, exc)
        return 2

    category = analysis.category
    if not category.success:
        print(f"Category detection failed: {category.error}")
        return 1
    print(f"Detection {analysis.detection_id}: {category.category.value} "
          f"({category.confidence:g}% confidence)")

    ident = analysis.identification
    if ident.halted:
        print("Identification stopped:")
        for issue in ident.validation.errors:
            print(f"  • {issue.message}")
        if ident.suggestions:
            print("Try:")
            for tip in ident.suggestions:
                print(f"  • {tip}")
        return 1
    if not ident.success:
        print(f"Identification failed: {ident.error}")
        return 1

    print(ident.summary)
    if ident.brand_context:
        print(ident.brand_context)

    if not (args.yes or _ask_confirmation()):
        await orch.confirm(analysis.detection_id, is_correct=False)
        print("Not confirmed; verification and pricing skipped.")
        return 1
    await orch.confirm(analysis.detection_id, is_correct=True)

    result = await orch.complete_analysis(analysis.detection_id)
    if args.json:
        _print_json(result.report)
    else:
        print(result.report["summary"])
    return 0 if not result.partial else 3


async def cmd_show(args: argparse.Namespace) -> int:
    import metadata_store
    from models import DetectionNotFoundError

    try:
        record = await metadata_store.get_full_record(args.detection_id)
    except DetectionNotFoundError as exc:
        print(exc)
        return 1
    _print_json(record)
    return 0


async def cmd_list(args: argparse.Namespace) -> int:
    import database
    from models import DetectionStatus

    status = DetectionStatus(args.status) if args.status else None
    records = await database.list_detections(owner_id=args.owner, status=status, limit=args.limit)
    for r in records:
        name = r.identified_product or "-"
        print(f"{r.id}  {r.status.value:<18} {(r.category.value if r.category else '?'):<12} {name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="analyzer", description="Staged product photo analysis")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("analyze", help="analyse 1-5 product photos")
    p.add_argument("images", nargs="+", help="image file paths")
    p.add_argument("--text", help="optional description from the seller")
    p.add_argument("--owner", help="owner id stored with the detection")
    p.add_argument("--yes", "-y", action="store_true", help="confirm the identification without asking")
    p.add_argument("--json", action="store_true", help="print the full report as JSON")
    p.set_defaults(func=cmd_analyze)

    p = sub.add_parser("show", help="print a detection with all its metadata")
    p.add_argument("detection_id")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("list", help="list recent detections")
    p.add_argument("--owner")
    p.add_argument("--status")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_list)
    return parser


async def run(args: argparse.Namespace) -> int:
    # ── Database bootstrap (must happen before anything else) ─────────────────
    import database as _db
    try:
        await _db.init_db()
        logger.info("Database ready at %s", _db.DB_PATH)
    except Exception as exc:
        logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
        raise
    return await args.func(args)


def main() -> None:
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
