import sys
import json
import asyncio
import argparse
import logging

from savesync import device_paths
from savesync.state import StateMixin
from savesync.platforms import PlatformMapMixin
from savesync.romm_client import RommClientMixin
from savesync.scanner import ScannerMixin
from savesync.resolver import ResolverMixin
from savesync.executor import ExecutorMixin
from savesync.save_sync import SaveSyncMixin
from savesync.logger import configure_logging, logger


class SaveSyncService(StateMixin, PlatformMapMixin, RommClientMixin, ScannerMixin,
                      ResolverMixin, ExecutorMixin, SaveSyncMixin):
    settings: dict

    def __init__(self, settings_dir=None, runtime_dir=None):
        self.settings_dir = settings_dir or device_paths.default_settings_dir()
        self.runtime_dir = runtime_dir or device_paths.default_runtime_dir()
        self._load_settings()
        self._init_save_sync_state()
        self._load_pass_state()
        logger.info(f"Save sync service ready (cfw={device_paths.get_cfw(self.settings) or 'unset'})")


def _build_parser():
    parser = argparse.ArgumentParser(
        description="Reconcile handheld save files with a RomM server.",
    )
    parser.add_argument("--settings-dir", help="Directory holding settings.json")
    parser.add_argument("--runtime-dir", help="Directory for the identity cache and temp files")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("sync", help="Run a reconciliation pass and print the report")
    sub.add_parser("pending", help="List fuzzy matches awaiting confirmation")
    sub.add_parser("unmatched", help="List saves whose ROM could not be identified")
    confirm = sub.add_parser("confirm", help="Accept or reject a pending fuzzy match")
    confirm.add_argument("platform", help="Platform slug, e.g. gba")
    confirm.add_argument("file", help="Local ROM file name")
    confirm.add_argument("--reject", action="store_true", help="Reject instead of accept")
    sub.add_parser("clear-cache", help="Forget every cached ROM identity")
    return parser


async def _run_command(service, args):
    if args.command == "sync":
        return await service.sync_all_saves()
    if args.command == "pending":
        return await service.get_pending_fuzzy_matches()
    if args.command == "unmatched":
        return await service.get_unmatched_saves()
    if args.command == "confirm":
        return await service.confirm_fuzzy_match(args.platform, args.file, accept=not args.reject)
    return await service.clear_identity_cache()


def main(argv=None):
    args = _build_parser().parse_args(argv)
    runtime_dir = args.runtime_dir or device_paths.default_runtime_dir()
    configure_logging(log_dir=runtime_dir, level=logging.DEBUG if args.verbose else logging.INFO)
    service = SaveSyncService(settings_dir=args.settings_dir, runtime_dir=runtime_dir)
    if args.verbose:
        service.settings["log_level"] = "debug"

    result = asyncio.run(_run_command(service, args))
    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if result.get("success", True) else 1


if __name__ == "__main__":
    sys.exit(main())
