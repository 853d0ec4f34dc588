"""Command line entry point: evaluate tracks, replay sessions, serve the API."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from .api import create_app
from .config import (
    API_HOST,
    API_PORT,
    LOCAL_STATE_DIR,
    SNAP_ENABLED,
    STORAGE_BASE_URL,
)
from .eligibility import evaluate
from .errors import SessionStartError, TrackFormatError
from .identity import CitySelectionStore, LocalProfileStore
from .local_store import JsonFileStore, KeyValueStore, MemoryStore
from .models import City, StopOutcome, TrackingMode
from .position_source import PositionSource, ReplayLocationProvider
from .session_controller import SessionController
from .snapping import SnapReconciler
from .storage import InMemoryStorage, RestStorageClient, StorageCollaborator
from .tasks import TaskSupervisor
from .track_io import load_track

LOGGER = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _outcome_payload(outcome: StopOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "message": outcome.message,
        "session_id": outcome.session_id,
        "finalized": outcome.finalized,
        "claim_data": outcome.claim_data,
        "eligibility": asdict(outcome.snapshot),
    }


def _build_storage(kind: str) -> StorageCollaborator:
    if kind == "rest":
        return RestStorageClient(STORAGE_BASE_URL)
    return InMemoryStorage()


def _build_local_store(args: argparse.Namespace) -> KeyValueStore:
    if args.ephemeral:
        return MemoryStore()
    return JsonFileStore(args.state_dir)


def cmd_evaluate(args: argparse.Namespace) -> int:
    fixes = load_track(args.track)
    snapshot = evaluate(fixes, args.mode)
    payload = {"mode": TrackingMode.parse(args.mode).value, **asdict(snapshot)}
    print(json.dumps(payload, indent=2))
    return 0 if snapshot.claimable else 2


def cmd_replay(args: argparse.Namespace) -> int:
    fixes = load_track(args.track)
    local_store = _build_local_store(args)
    profiles = LocalProfileStore(local_store)
    cities = CitySelectionStore(local_store)
    profiles.get_or_create(args.username)
    if args.city_id:
        cities.select(City(id=args.city_id, name=args.city_id))

    provider = ReplayLocationProvider(fixes, interval=args.interval)
    supervisor = TaskSupervisor()
    reconciler = SnapReconciler() if SNAP_ENABLED and not args.no_snap else None
    controller = SessionController(
        _build_storage(args.storage),
        PositionSource(provider),
        profiles,
        cities,
        reconciler=reconciler,
        local_store=local_store,
        supervisor=supervisor,
    )
    try:
        controller.start(args.mode, live_mode=args.live)
    except SessionStartError as exc:
        LOGGER.error("Could not start session: %s", exc)
        controller.shutdown()
        return 1
    try:
        provider.finished.wait()
        if not supervisor.wait(timeout=args.drain_timeout):
            LOGGER.warning("Background tasks still running after %ss", args.drain_timeout)
        outcome = controller.stop()
    finally:
        controller.shutdown()
    print(json.dumps(_outcome_payload(outcome), indent=2, default=str))
    return 0 if outcome.claimed else 2


def cmd_serve(args: argparse.Namespace) -> int:
    storage = RestStorageClient(STORAGE_BASE_URL) if STORAGE_BASE_URL else None
    app = create_app(storage=storage)
    LOGGER.info("Serving territory API on %s:%s", args.host, args.port)
    app.run(host=args.host, port=args.port)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="territory-run",
        description="Record, snap and claim closed GPS loops",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    mode_kwargs: Dict[str, Any] = {
        "choices": [mode.value for mode in TrackingMode],
        "default": TrackingMode.WALK_RUN.value,
        "help": "Movement mode (decides snap profiles and minimum perimeter)",
    }

    evaluate_parser = sub.add_parser("evaluate", help="Print claim eligibility for a track")
    evaluate_parser.add_argument("track", help="GPX or CSV track file")
    evaluate_parser.add_argument("--mode", **mode_kwargs)
    evaluate_parser.set_defaults(handler=cmd_evaluate)

    replay_parser = sub.add_parser("replay", help="Replay a track through a full session")
    replay_parser.add_argument("track", help="GPX or CSV track file")
    replay_parser.add_argument("--mode", **mode_kwargs)
    replay_parser.add_argument("--live", action="store_true", help="Enable live mode")
    replay_parser.add_argument("--no-snap", action="store_true", help="Skip map matching")
    replay_parser.add_argument(
        "--storage",
        choices=["memory", "rest"],
        default="memory",
        help="Storage backend (rest uses STORAGE_BASE_URL)",
    )
    replay_parser.add_argument(
        "--interval",
        type=float,
        default=0.0,
        help="Seconds between replayed fixes (0 = as fast as possible)",
    )
    replay_parser.add_argument("--username", default="Runner", help="Local profile name")
    replay_parser.add_argument("--city-id", help="City id to select before starting")
    replay_parser.add_argument(
        "--state-dir",
        default=LOCAL_STATE_DIR,
        help="Directory for local state (defaults to LOCAL_STATE_DIR)",
    )
    replay_parser.add_argument(
        "--ephemeral", action="store_true", help="Keep local state in memory only"
    )
    replay_parser.add_argument(
        "--drain-timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for snap/upload tasks before stopping",
    )
    replay_parser.set_defaults(handler=cmd_replay)

    serve_parser = sub.add_parser("serve", help="Run the snap/claim HTTP API")
    serve_parser.add_argument("--host", default=API_HOST)
    serve_parser.add_argument("--port", type=int, default=API_PORT)
    serve_parser.set_defaults(handler=cmd_serve)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return int(args.handler(args))
    except (TrackFormatError, FileNotFoundError) as exc:
        LOGGER.error("Failed to load track '%s': %s", getattr(args, "track", "?"), exc)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI helper
    sys.exit(main())
