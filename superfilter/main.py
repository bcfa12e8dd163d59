"""Command-line entry point: run one algorithm on image files and save the result."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from superfilter.config import settings
from superfilter.engine import AlgorithmKind, AlgorithmRunner, EngineConfig, create_algorithm
from superfilter.engine.config import ComponentPolicy, SlicVisualization
from superfilter.engine.errors import AlgorithmError
from superfilter.imaging.pixel_buffer import PixelBuffer

load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.superfilter_log_level).upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="superfilter",
        description="Superpixel segmentation and Otsu-thresholded superpixel filtering",
    )
    parser.add_argument(
        "algorithm",
        choices=[kind.value for kind in AlgorithmKind],
        help="Algorithm to run",
    )
    parser.add_argument("input", type=Path, help="Input image")
    parser.add_argument(
        "extra",
        type=Path,
        nargs="*",
        help="Additional images the algorithm requires (e.g. a selection map)",
    )
    parser.add_argument("-o", "--output", type=Path, help="Output PNG (default: <input>_<algorithm>.png)")
    parser.add_argument("-k", type=int, default=settings.superfilter_default_k, help="Number of superpixels")
    parser.add_argument("-m", type=float, default=settings.superfilter_default_m, help="Compactness weight")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in ComponentPolicy],
        default=ComponentPolicy.LARGEST.value,
        help="Which connected component keeps a cluster's label",
    )
    parser.add_argument(
        "--visualization",
        choices=[v.value for v in SlicVisualization],
        default=SlicVisualization.MEAN_COLOR.value,
        help="SLIC output rendering",
    )
    parser.add_argument("--no-postprocessing", action="store_true", help="Skip connectivity enforcement")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every increment")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("debug" if args.verbose else None)

    config = EngineConfig()
    config.slic = replace(
        config.slic,
        k=args.k,
        m=args.m,
        component_policy=ComponentPolicy(args.policy),
        visualization=SlicVisualization(args.visualization),
        postprocessing=not args.no_postprocessing,
    )
    kind = AlgorithmKind(args.algorithm)
    algo = create_algorithm(kind, config)

    required = algo.additional_required_images()
    if len(args.extra) < len(required):
        print(f"{kind.value} needs additional images: {', '.join(required)}", file=sys.stderr)
        return 2

    for path in [args.input, *args.extra]:
        if not path.is_file():
            print(f"File not found: {path}", file=sys.stderr)
            return 1

    images = [PixelBuffer.from_path(p) for p in [args.input, *args.extra[: len(required)]]]
    runner = AlgorithmRunner(max_increments=settings.superfilter_max_increments or None)
    try:
        result = runner.run(algo, images)
    except AlgorithmError as e:
        logger.error("%s failed: %s", algo.name, e)
        return 1

    if result is None:
        return 0
    output_path = args.output or args.input.with_name(f"{args.input.stem}_{kind.value}.png")
    result.image.save(output_path)
    print(f"  → Saved: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
