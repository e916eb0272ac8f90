"""Command line entry point: analyse evidence files and print the result as JSON."""

import argparse
import asyncio
import json
import logging
import sys

from analysis_engine import AnalysisEngine, AnalysisOptions
from datamodels.findings import to_serializable
from infra.errors import ThreatLensError
from infra.log_config import setup_logging
from infra.storage import write_text_file
from settings import load_settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="threatlens", description="Security log analysis pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyse one or more evidence files")
    analyze.add_argument("files", nargs="+", help="Evidence files")
    analyze.add_argument("--no-ai", action="store_true", help="Use rule-based insights only")
    analyze.add_argument("--no-report", action="store_true", help="Skip the executive report")
    analyze.add_argument("--no-timeline", action="store_true", help="Skip timeline construction")
    analyze.add_argument("--no-correlation", action="store_true", help="Skip event correlation")
    analyze.add_argument("--config", help="YAML configuration file")
    analyze.add_argument("--output", "-o", help="Write JSON here instead of stdout")
    analyze.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")

    detect = sub.add_parser("detect", help="Show which parser claims each file")
    detect.add_argument("files", nargs="+")
    detect.add_argument("--config", help="YAML configuration file")
    return parser


async def _run_analyze(args, cfg) -> dict:
    engine = AnalysisEngine.from_settings(cfg)
    options = AnalysisOptions.from_settings(
        cfg,
        enable_ai_analysis=not args.no_ai,
        generate_executive_report=not args.no_report,
        include_timeline=not args.no_timeline,
        include_correlation=not args.no_correlation,
    )
    if len(args.files) == 1:
        result = await engine.analyze_file(args.files[0], options)
    else:
        result = await engine.analyze_files(args.files, options)
    payload = to_serializable(result)
    if args.output:
        await write_text_file(args.output, json.dumps(payload, indent=2))
    return payload


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_settings(args.config)
    setup_logging(getattr(args, "log_level", None) or cfg["log_level"])

    if args.command == "detect":
        engine = AnalysisEngine.from_settings(cfg, audit=False)
        for path in args.files:
            print(f"{path}\t{engine.registry.detect_type(path)}")
        return 0

    try:
        payload = asyncio.run(_run_analyze(args, cfg))
    except ThreatLensError as e:
        logger.error(e.message)
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 2
    if not args.output:
        print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
