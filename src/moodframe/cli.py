"""CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
from datetime import datetime

from .config import Config, load_config, save_config, validate_config
from .errors import MoodFrameError
from .logging_utils import setup_logging
from .pipeline import AnalysisComplete, AnalysisFailed, CaptureComplete, build_pipeline, build_writer
from .recorder import list_input_devices
from .renderer import render_check_in, render_history
from .session_io import save_check_in
from .storage import build_export_basename, ensure_dir

logger = logging.getLogger("moodframe")


class _Reporter:
    """Prints pipeline events and keeps the final one."""

    def __init__(self, out_dir: str | None = None) -> None:
        self.out_dir = out_dir
        self.outcome = None

    def __call__(self, event) -> None:
        if isinstance(event, CaptureComplete):
            print(f"Captured {event.duration_ms / 1000:.1f}s of audio. Analyzing...")
            return
        self.outcome = event
        if isinstance(event, AnalysisFailed):
            print(f"Check-in failed: {event.message}")
            if event.return_to == "capture":
                print("Try recording again.")
            return
        if isinstance(event, AnalysisComplete):
            print(render_check_in(event.record))
            if self.out_dir:
                self._export(event)

    def _export(self, event: AnalysisComplete) -> None:
        now = datetime.now()
        ensure_dir(self.out_dir)
        basename = build_export_basename(event.record.mood_title, now)
        note_path = os.path.join(self.out_dir, f"{basename}.md")
        with open(note_path, "w", encoding="utf-8") as handle:
            handle.write(render_check_in(event.record, date=now.strftime("%Y-%m-%d")))
        save_check_in(os.path.join(self.out_dir, f"{basename}.checkin.json"), event.record)
        print(f"Note saved: {note_path}")


def _load(path: str) -> Config:
    cfg = load_config(path)
    setup_logging(cfg.log_dir)
    return cfg


def _record(cfg: Config, out_dir: str | None) -> int:
    reporter = _Reporter(out_dir)
    with build_pipeline(cfg, listener=reporter) as pipeline:
        pipeline.start_capture()
        print("Recording. Press Enter to stop, Ctrl+C to cancel.")
        try:
            input()
        except (KeyboardInterrupt, EOFError):
            pipeline.cancel_capture()
            print("Recording cancelled.")
            return 1
        pipeline.stop_capture()
        pipeline.wait()
    return 0 if isinstance(reporter.outcome, AnalysisComplete) else 1


def _rerun(cfg: Config, args: argparse.Namespace) -> int:
    reporter = _Reporter(args.out)
    with build_pipeline(cfg, listener=reporter, background=False) as pipeline:
        pipeline.rerun_analysis(args.transcript, args.emotion, args.score)
    return 0 if isinstance(reporter.outcome, AnalysisComplete) else 1


def main() -> int:
    parser = argparse.ArgumentParser(prog="moodframe")
    parser.add_argument("--config", default="moodframe_config.yml", help="Config.")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices")
    devices_cmd.add_argument("--match", help="Filter device names by substring.")

    record_cmd = sub.add_parser("record")
    record_cmd.add_argument("--out", help="Directory for Markdown and JSON exports.")

    rerun_cmd = sub.add_parser("rerun")
    rerun_cmd.add_argument("transcript", help="Transcript to analyze again.")
    rerun_cmd.add_argument("--emotion", help="Emotion label.")
    rerun_cmd.add_argument("--score", type=float, help="Emotion score in [0, 1].")
    rerun_cmd.add_argument("--out", help="Directory for Markdown and JSON exports.")

    history_cmd = sub.add_parser("history")
    history_cmd.add_argument("--limit", type=int, default=50, help="Entries to show.")

    profile_cmd = sub.add_parser("profile")
    profile_cmd.add_argument("--name", help="Full name.")
    profile_cmd.add_argument("--avatar-url", help="Avatar URL.")
    profile_cmd.add_argument("--phone", help="Phone number.")
    profile_cmd.add_argument("--emergency-contact", help="Emergency contact.")

    sub.add_parser("config")

    args = parser.parse_args()
    if args.command == "devices":
        devices = list_input_devices()
        if args.match:
            devices = [
                d for d in devices if args.match.lower() in d.get("name", "").lower()
            ]
        for device in devices:
            name = device.get("name", "Unknown")
            index = device.get("index", "?")
            channels = device.get("max_input_channels", 0)
            print(f"[{index}] {name} (inputs: {channels})")
        return 0

    if args.command == "config":
        if os.path.exists(args.config):
            print(f"{args.config} already exists.")
            return 1
        save_config(args.config, Config())
        print(f"Wrote {args.config}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    try:
        cfg = _load(args.config)
        if args.command == "record":
            return _record(cfg, args.out)
        if args.command == "rerun":
            return _rerun(cfg, args)
        if args.command == "history":
            validate_config(cfg)
            writer = build_writer(cfg)
            try:
                print(render_history(writer.history(cfg.user_id, limit=args.limit)))
            finally:
                writer.close()
            return 0
        if args.command == "profile":
            validate_config(cfg)
            writer = build_writer(cfg)
            try:
                writer.save_profile(
                    cfg.user_id,
                    {
                        "full_name": args.name,
                        "avatar_url": args.avatar_url,
                        "phone": args.phone,
                        "emergency_contact": args.emergency_contact,
                    },
                )
            finally:
                writer.close()
            print("Profile saved.")
            return 0
    except MoodFrameError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}")
        return 2

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
