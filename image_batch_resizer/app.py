"""
Command-line entry point.

Usage:
    python -m image_batch_resizer.app photos/ --preset "Full HD" -o out/
    image-batch-resizer a.jpg b.png --width 800 --format webp -q 80   (after pip install)
"""

import argparse
import logging
import sys
from pathlib import Path

from image_batch_resizer.config import (
    ASPECT_RATIO_SHORTCUTS, DEFAULT_ARCHIVE_NAME, DEFAULT_WORKERS, OUTPUT_FORMAT_TABLE,
    QUALITY_PERCENT_MAX, QUALITY_PERCENT_MIN,
)
from image_batch_resizer.image_io import scan_folder
from image_batch_resizer.packager import ArchiveError, sanitize_archive_name
from image_batch_resizer.presets import load_presets, save_presets, store_preset
from image_batch_resizer.processor import BatchProcessor
from image_batch_resizer.session import ResizeSession
from image_batch_resizer.stats import format_bytes

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-batch-resizer",
        description="Resize a batch of images and package them into one zip archive.",
    )
    parser.add_argument("inputs", nargs="*", type=Path, help="image files or folders")
    parser.add_argument("-p", "--preset", help="named size preset (see --list-presets)")
    parser.add_argument("-W", "--width", type=int, help="target width in pixels")
    parser.add_argument("-H", "--height", type=int, help="target height in pixels")
    parser.add_argument("-a", "--aspect", choices=[name for name, _, _ in ASPECT_RATIO_SHORTCUTS],
                        help="aspect-ratio shortcut applied to width/height")
    parser.add_argument("--no-keep-ratio", action="store_true",
                        help="stretch to width x height instead of keeping each image's ratio")
    parser.add_argument("-q", "--quality", type=int, metavar="PERCENT",
                        help=f"encoder quality {QUALITY_PERCENT_MIN}-{QUALITY_PERCENT_MAX}")
    parser.add_argument("-f", "--format", choices=sorted(OUTPUT_FORMAT_TABLE), help="output format")
    parser.add_argument("-r", "--rotate", type=int, choices=[0, 90, 180, 270], default=0,
                        help="clockwise rotation applied to every image")
    parser.add_argument("-o", "--output", type=Path, default=Path("."), help="folder for the zip file")
    parser.add_argument("-n", "--name", default=DEFAULT_ARCHIVE_NAME, help="archive (and folder) name")
    parser.add_argument("-j", "--workers", type=int, default=DEFAULT_WORKERS,
                        help="parallel encoder processes")
    parser.add_argument("--no-recursive", action="store_true", help="do not descend into sub-folders")
    parser.add_argument("--list-presets", action="store_true", help="print presets and exit")
    parser.add_argument("--save-preset", metavar="NAME",
                        help="store the resulting width x height as a named preset")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def collect_inputs(inputs: list[Path], recursive: bool = True) -> list[Path]:
    files = []
    for entry in inputs:
        if entry.is_dir():
            files.extend(scan_folder(entry, recursive=recursive))
        else:
            files.append(entry)
    return files


def configure_session(session: ResizeSession, args: argparse.Namespace) -> None:
    """Apply command-line sizing options in the same order a user would click them."""
    if args.preset:
        session.select_preset(args.preset)
    if args.aspect:
        session.select_aspect_ratio(args.aspect)
    if args.width is not None:
        session.set_width(args.width)
    if args.height is not None:
        session.set_height(args.height)
    if args.no_keep_ratio:
        session.set_maintain_aspect_ratio(False)
    if args.quality is not None:
        percent = min(QUALITY_PERCENT_MAX, max(QUALITY_PERCENT_MIN, args.quality))
        session.set_quality(percent / 100)
    if args.format:
        session.set_output_format(args.format)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    presets = load_presets()
    if args.list_presets:
        for preset in presets:
            size = "free-form" if preset.is_custom else f"{preset.width}x{preset.height}"
            print(f"{preset.name:<12} {size}")
        return 0

    if not args.inputs and not args.save_preset:
        parser.error("no input files or folders given")

    session = ResizeSession(presets=presets, processor=BatchProcessor(workers=args.workers))
    try:
        configure_session(session, args)
    except KeyError as exc:
        parser.error(str(exc))

    if args.save_preset:
        policy = session.policy
        try:
            session.presets = store_preset(session.presets, args.save_preset,
                                           policy.target_width, policy.target_height)
            save_presets(session.presets)
        except (ValueError, OSError) as exc:
            logger.error("Could not save preset %r: %s", args.save_preset, exc)
            return 1
        logger.info("Saved preset %r (%dx%d)", args.save_preset, policy.target_width, policy.target_height)
        if not args.inputs:
            return 0

    added, rejected = session.add_files(collect_inputs(args.inputs, recursive=not args.no_recursive))
    if not added:
        logger.error("No readable images among the inputs")
        return 1
    for item_id in added:
        for _ in range(args.rotate // 90):
            session.rotate_item(item_id)

    policy = session.policy
    logger.info(
        "Resizing %d image(s) to %sx%s (%s ratio) as %s at quality %d%%",
        len(added), policy.target_width, policy.target_height,
        "keep" if policy.maintain_aspect_ratio else "free",
        policy.output_format.value.upper(), round(policy.quality * 100),
    )

    def _log_progress(event):
        logger.info("[%3.0f%%] %s %s", event.percent, event.item_id,
                    event.status.value if event.status else "skipped")

    report = session.process_all(on_progress=_log_progress)
    if report.completed == 0:
        logger.error("No image could be resized (%d failed)", report.failed)
        return 1

    name = sanitize_archive_name(args.name)
    try:
        blob = session.build_archive(name)
    except ArchiveError as exc:
        logger.error("%s", exc)
        return 1

    args.output.mkdir(parents=True, exist_ok=True)
    out_path = args.output / f"{name}.zip"
    out_path.write_bytes(blob)

    stats = session.stats()
    logger.info("Wrote %s (%d image(s), %d failed, %d unreadable)",
                out_path, report.completed, report.failed, len(rejected))
    logger.info("Size %s -> %s", format_bytes(stats.original_bytes), format_bytes(stats.resized_bytes))
    return 0


if __name__ == "__main__":
    sys.exit(main())
