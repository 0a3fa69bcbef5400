import argparse
import asyncio
import json
import sys
from typing import Any, Iterable, Optional

from .app import Application, build_application
from .config.settings import ConfigManager
from .core.errors import FieldJobSyncError


def _print_json(data: Any):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def _scan(app: Application, args) -> int:
    summary = await app.scheduler.run_now()
    _print_json(summary.to_dict())
    return 0


async def _check_job(app: Application, args) -> int:
    result = await app.detector.check_one_job(args.job_id)
    _print_json(result.to_dict())
    return 0


async def _sync_job(app: Application, args) -> int:
    job = await app.job_store.get_job(args.job_id)
    outcome = await app.engine.sync(job)
    _print_json({
        "job_id": outcome.job_id,
        "skipped": outcome.skip_reason,
        "calendar_id": outcome.calendar_id,
        "event_ids": outcome.event_ids,
        "removed_event_ids": outcome.removed_event_ids,
        "event_id_written": outcome.event_id_written,
    })
    return 0


async def _resync(app: Application, args) -> int:
    if args.missing_only:
        result = await app.lifecycle.sync_missing()
    else:
        result = await app.lifecycle.resync_all()
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


async def _audit(app: Application, args) -> int:
    _print_json(await app.lifecycle.audit_calendar_coverage())
    return 0


async def _reconcile_calendar(app: Application, args) -> int:
    result = await app.reconciler.reconcile_from_calendar(import_unlinked=args.import_unlinked)
    if app.history is not None:
        await app.history.record_run("reconcile_from_calendar", result.to_dict())
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


async def _set_status(app: Application, args) -> int:
    result = await app.lifecycle.bulk_change_status(args.job_ids, args.status, args.notes)
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


async def _repair_columns(app: Application, args) -> int:
    result = await app.column_repair.repair_all()
    if app.history is not None:
        await app.history.record_run("repair_columns", result.to_dict())
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


async def _next_id(app: Application, args) -> int:
    print(await app.job_store.get_next_job_id())
    return 0


async def _history(app: Application, args) -> int:
    if app.history is None:
        raise SystemExit("実行履歴が無効です (history.enabled = false)")
    runs = await app.history.recent_runs(args.limit, args.kind)
    _print_json([run.to_dict() for run in runs])
    return 0


async def _serve(app: Application, args) -> int:
    if not app.config.scheduler.enabled:
        raise SystemExit("スケジューラーが無効です (scheduler.enabled = false)")
    if app.history is not None:
        await app.history.initialize()

    app.scheduler.start()
    _print_json(app.scheduler.status())
    try:
        await asyncio.Event().wait()
    finally:
        app.scheduler.stop()
    return 0


COMMANDS = {
    "scan": _scan,
    "check-job": _check_job,
    "sync-job": _sync_job,
    "resync": _resync,
    "audit": _audit,
    "reconcile-calendar": _reconcile_calendar,
    "set-status": _set_status,
    "repair-columns": _repair_columns,
    "next-id": _next_id,
    "history": _history,
    "serve": _serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fieldjob-sync", description="Field job calendar reconciliation")
    parser.add_argument("--config-dir", default="config", help="設定ディレクトリ")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("scan", help="ドリフトスキャンを今すぐ実行")

    check = subparsers.add_parser("check-job", help="単一ジョブのイベント所在チェック")
    check.add_argument("job_id")

    sync = subparsers.add_parser("sync-job", help="単一ジョブをカレンダーへ同期")
    sync.add_argument("job_id")

    resync = subparsers.add_parser("resync", help="Scheduled/Rescheduled の全ジョブを再同期")
    resync.add_argument("--missing-only", action="store_true", help="イベントID未設定のジョブのみ")

    subparsers.add_parser("audit", help="カレンダー登録状況を集計")

    reconcile = subparsers.add_parser("reconcile-calendar", help="カレンダー上の日時変更をジョブへ反映")
    reconcile.add_argument("--import-unlinked", action="store_true", help="ジョブIDのないイベントを新規ジョブとして取り込む")

    status = subparsers.add_parser("set-status", help="ステータス変更（カレンダー連動）")
    status.add_argument("status")
    status.add_argument("job_ids", nargs="+")
    status.add_argument("--notes", default="", help="備考")

    subparsers.add_parser("repair-columns", help="zone/status の入れ違いを修復")
    subparsers.add_parser("next-id", help="次のジョブIDを表示")

    history = subparsers.add_parser("history", help="実行履歴を表示")
    history.add_argument("--limit", type=int, default=10)
    history.add_argument("--kind", choices=["drift_scan", "repair_columns", "reconcile_from_calendar"])

    subparsers.add_parser("serve", help="スケジューラーを起動して待機")
    subparsers.add_parser("init-config", help="設定テンプレートを作成")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    manager = ConfigManager(args.config_dir)
    if args.command == "init-config":
        manager.save_config_template()
        return 0

    app = build_application(manager.load_config())
    try:
        return asyncio.run(COMMANDS[args.command](app, args))
    except FieldJobSyncError as e:
        print(f"エラー: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
