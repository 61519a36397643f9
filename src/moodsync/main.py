"""Command-line entrypoint — run one-off fusion, feedback and wellness commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from moodsync.config import get_settings
from moodsync.errors import MoodSyncError, SchemaMismatchError
from moodsync.fusion.adapter import normalize
from moodsync.fusion.models import FusionResult
from moodsync.fusion.pipeline import FusionPipeline
from moodsync.logger import setup_logging
from moodsync.models import ClassifierOutput, ContextSignals, ModalityObservation
from moodsync.storage.profiles import JsonFileProfileStore

logger = structlog.get_logger(__name__)

_HISTORY = TypeAdapter(list[FusionResult])


def _read_json(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _load_observations(doc: dict[str, Any], context: ContextSignals) -> list[ModalityObservation]:
    observations: list[ModalityObservation] = []
    for item in doc.get("observations", []):
        try:
            output = ClassifierOutput(
                probabilities=item["probabilities"], confidence=item.get("confidence"),
            )
            observations.append(normalize(output, item["modality"], context))
        except (SchemaMismatchError, ValidationError, ValueError, KeyError, TypeError) as exc:
            modality = item.get("modality") if isinstance(item, dict) else None
            logger.warning("cli.observation_rejected", modality=modality, reason=repr(exc))
    return observations


def _cmd_detect(pipeline: FusionPipeline, args: argparse.Namespace) -> Any:
    doc = _read_json(args.input)
    context = ContextSignals.model_validate(doc.get("context", {}))
    observations = _load_observations(doc, context)
    result = pipeline.detect_emotion(observations, context, args.user)
    return result.model_dump(mode="json")


def _cmd_feedback(pipeline: FusionPipeline, args: argparse.Namespace) -> Any:
    profile = pipeline.submit_feedback(args.user, args.modality, args.label)
    return profile.model_dump(mode="json")


def _cmd_wellness(pipeline: FusionPipeline, args: argparse.Namespace) -> Any:
    history = _HISTORY.validate_python(_read_json(args.history))
    report = pipeline.get_wellness_report(args.user, history)
    return report.model_dump(mode="json")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="moodsync",
        description="Multi-modal emotion fusion and adaptive calibration engine.",
    )
    parser.add_argument("--profile-dir", default=None, help="Directory of the JSON profile store.")
    sub = parser.add_subparsers(dest="command")

    # ── detect ────────────────────────────────────────────────
    detect_parser = sub.add_parser("detect", help="Fuse modality observations from a JSON document.")
    detect_parser.add_argument("--user", required=True)
    detect_parser.add_argument("--input", required=True, help="JSON file ('-' for stdin).")

    # ── feedback ──────────────────────────────────────────────
    feedback_parser = sub.add_parser("feedback", help="Confirm the correct emotion for a modality.")
    feedback_parser.add_argument("--user", required=True)
    feedback_parser.add_argument("--modality", required=True)
    feedback_parser.add_argument("--label", required=True)

    # ── wellness ──────────────────────────────────────────────
    wellness_parser = sub.add_parser("wellness", help="Wellness report from a JSON result history.")
    wellness_parser.add_argument("--user", required=True)
    wellness_parser.add_argument("--history", required=True, help="JSON file ('-' for stdin).")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    commands = {
        "detect": _cmd_detect,
        "feedback": _cmd_feedback,
        "wellness": _cmd_wellness,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    store = JsonFileProfileStore(args.profile_dir or settings.profile_dir)
    pipeline = FusionPipeline.from_settings(store, settings=settings)
    try:
        output = handler(pipeline, args)
    except (MoodSyncError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)
    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    main()
