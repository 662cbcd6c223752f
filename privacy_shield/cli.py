import argparse
import sys
from typing import List, Optional

from .config import ShieldSettings, headless_requested
from .exceptions import ShieldError
from .logger import configure_log_dir, setup_logger
from .template_store import TemplateStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Hide the screen when an unrecognised viewer is in front of it"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Watch the webcam and shield the screen from strangers")
    _add_camera_args(run)
    run.add_argument("--frame-skip", type=int, default=None, help="Analyse one of every N frames")
    run.add_argument("--match-threshold", type=float, default=None, help="Maximum embedding distance for a match")
    run.add_argument("--no-console", action="store_true", help="Do not read commands from the terminal")

    enroll = subparsers.add_parser("enroll", help="Capture and store a trusted face")
    enroll.add_argument("--label", default="owner", help="Name for the enrolled face")
    _add_camera_args(enroll)

    calibrate = subparsers.add_parser("calibrate", help="Measure how close counts as reading distance")
    _add_camera_args(calibrate)

    subparsers.add_parser("list", help="List enrolled faces")

    reset = subparsers.add_parser("reset", help="Delete enrolled faces")
    reset.add_argument("--label", default=None, help="Only delete this face (default: all)")

    return parser


def _add_camera_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--camera", type=int, default=None, help="Webcam index")
    parser.add_argument("--no-window", action="store_true", help="Never open the OpenCV shield window")


def _load_settings(args: argparse.Namespace) -> ShieldSettings:
    settings = ShieldSettings.from_env()
    settings.ensure_directories()
    configure_log_dir(settings.log_dir)
    settings.load_preferences()
    if getattr(args, "camera", None) is not None:
        settings.camera_index = args.camera
    if getattr(args, "frame_skip", None) is not None:
        settings.frame_skip = args.frame_skip
    if getattr(args, "match_threshold", None) is not None:
        settings.match_threshold = args.match_threshold
    settings.validate()
    return settings


def _run_capture(settings: ShieldSettings, args: argparse.Namespace, label: Optional[str] = None) -> bool:
    from .runtime import build_runtime

    headless = args.no_window or headless_requested()
    runtime = build_runtime(settings, headless=headless, enable_console=False)
    outcome: List[bool] = []

    def finish(success: bool) -> None:
        outcome.append(success)
        runtime.stop_event.set()

    def calibration_done(success: bool, measured: float) -> None:
        runtime.calibration_finished(success, measured)
        finish(success)

    if label is None:
        runtime.engine.start_calibration(on_complete=calibration_done)
    else:
        runtime.engine.start_enrollment(label, on_complete=finish)
    runtime.run()
    return bool(outcome and outcome[0])


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args)
        setup_logger("main").info("Command: %s (data dir %s)", args.command, settings.data_dir)

        if args.command == "run":
            from .runtime import build_runtime

            headless = args.no_window or headless_requested()
            runtime = build_runtime(settings, headless=headless, enable_console=not args.no_console)
            summary = runtime.run()
            print(
                "Session summary: "
                f"duration={summary['duration_seconds']:.1f}s, "
                f"analysis_fps={summary['analysis_fps']:.2f}, "
                f"latency={summary['analysis_latency_ms']:.1f}ms, "
                f"dropped={int(summary['dropped_frames'])}, "
                f"alerts={int(summary['stranger_alerts'])}"
            )
            return 0

        if args.command == "enroll":
            if _run_capture(settings, args, label=args.label):
                print(f"Enrolled '{args.label}' with {settings.max_enrollment_samples} samples.")
                return 0
            print("Enrollment did not complete.")
            return 1

        if args.command == "calibrate":
            if _run_capture(settings, args):
                print(f"Calibrated min_face_size={settings.min_face_size:.3f}")
                return 0
            print("Calibration did not complete.")
            return 1

        store = TemplateStore(settings.db_path, settings.embedding_key_path)

        if args.command == "list":
            identities = store.load()
            if not identities:
                print("No faces enrolled.")
                return 0
            print(f"{'Label':<24} {'Samples':>7}  Updated")
            print("-" * 52)
            for label, identity in sorted(identities.items()):
                print(f"{label:<24} {len(identity.embeddings):>7}  {identity.updated_at:%Y-%m-%d %H:%M}")
            return 0

        if args.command == "reset":
            if args.label is None:
                # Must work on a store that can no longer be decrypted.
                store.clear()
                print("Removed all enrolled faces.")
                return 0
            identities = store.load()
            if identities.pop(args.label, None) is None:
                print(f"No enrolled face named '{args.label}'.")
                return 1
            store.save_all(identities)
            print(f"Removed '{args.label}'.")
            return 0

    except ShieldError as exc:
        setup_logger("main").error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        setup_logger("main").exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
