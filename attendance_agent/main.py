"""自動出勤打刻エージェント - エントリーポイント"""
import argparse
import logging
import os
import signal
import sys
import time

from dotenv import load_dotenv

from attendance_agent.schedulers.geofence_host import SamplingGeofenceHost
from attendance_agent.schedulers.scheduler import APSchedulerScheduler
from attendance_agent.services.background_attendance import BackgroundAttendance
from attendance_agent.services.config_loader import load_config
from attendance_agent.services.coordinator import AttendanceCoordinator
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.fixed_location import FixedLocationHost
from attendance_agent.services.gateway import AttendanceGateway
from attendance_agent.services.location_provider import LocationProvider
from attendance_agent.services.notifier import ConsoleNotifier, SlackNotifier
from attendance_agent.services.storage import create_store
from attendance_agent.triggers.geofence import GeofenceTrigger
from attendance_agent.triggers.location_tracking import LocationTracker
from attendance_agent.triggers.manual import ManualTrigger
from attendance_agent.triggers.polling import PollingTrigger

logger = logging.getLogger("attendance_agent")


def setup_logging(logging_config: dict):
    logging.basicConfig(
        level=getattr(logging, str(logging_config["level"]).upper(), logging.INFO),
        format=logging_config["format"],
    )
    # APSchedulerの実行ログは冗長なため抑制
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_services(config: dict):
    """設定に基づいてサービスインスタンスを生成"""
    gateway = AttendanceGateway.from_config(config["backend"])
    ttl_seconds = config["lock"]["ttl_seconds"]
    if gateway.max_call_seconds >= ttl_seconds:
        raise ValueError(
            f"バックエンド呼び出しの最大所要時間({gateway.max_call_seconds:.0f}秒)が"
            f"ロックTTL({ttl_seconds}秒)以上です。timeout_seconds か retry_count を減らしてください"
        )
    store = create_store(config["storage"])

    # 位置情報
    location_host = FixedLocationHost.from_config(config["location"]["fixed"])
    locator = LocationProvider(
        location_host, low_confidence_meters=config["location"]["low_confidence_meters"]
    )

    coordinator = AttendanceCoordinator(
        store=store,
        gateway=gateway,
        locator=locator,
        lock=DedupLock(store, ttl_seconds=ttl_seconds),
    )

    # Slack通知
    slack_config = config["slack"]
    slack_token = os.getenv("SLACK_BOT_TOKEN", "")
    slack_channel = os.getenv("SLACK_NOTIFY_CHANNEL", slack_config.get("notify_channel", ""))
    if slack_config["enabled"] and slack_token:
        notifier = SlackNotifier.from_token(slack_token, slack_channel)
    else:
        notifier = ConsoleNotifier()

    # トリガー
    polling_config = config["polling"]
    polling = PollingTrigger(
        coordinator,
        APSchedulerScheduler(interval_minutes=polling_config["interval_minutes"]),
        budget_seconds=polling_config["budget_seconds"],
        working_hours_only=polling_config["working_hours_only"],
        working_hours=config["working_hours"],
    )

    geofence_config = config["geofence"]
    geofence = None
    if geofence_config["enabled"]:
        geofence = GeofenceTrigger(
            coordinator,
            SamplingGeofenceHost(
                location_host,
                sample_interval_seconds=geofence_config["sample_interval_seconds"],
            ),
            store,
            radius_meters=geofence_config["radius_meters"],
            working_hours=config["working_hours"],
        )

    manual = ManualTrigger(coordinator, notifier=notifier)

    tracking_config = config["location_tracking"]
    tracker = None
    if tracking_config["enabled"]:
        tracker = LocationTracker(
            gateway,
            locator,
            store,
            APSchedulerScheduler(interval_minutes=tracking_config["interval_minutes"]),
            working_hours=tracking_config["working_hours"],
        )

    return BackgroundAttendance(
        polling=polling,
        manual=manual,
        geofence=geofence,
        store=store,
        gateway=gateway,
        tracker=tracker,
    )


def run(service: BackgroundAttendance):
    """常駐起動処理"""
    if not service.start_background_attendance():
        logger.error("自動打刻サービスを開始できませんでした")
        service.close()
        return 1
    logger.info("自動打刻サービスを開始しました。Ctrl+Cで停止します")

    # シグナルハンドリング
    def shutdown(signum, frame):
        logger.info("停止中...")
        service.stop_background_attendance()
        service.close()
        logger.info("停止しました")
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        shutdown(None, None)
    return 0


def main(argv=None):
    """メイン起動処理"""
    parser = argparse.ArgumentParser(prog="attendance-agent", description="自動出勤打刻エージェント")
    parser.add_argument("command", nargs="?", default="run", choices=["run", "mark", "status"])
    parser.add_argument("--config", default="config.yaml", help="設定ファイルのパス")
    args = parser.parse_args(argv)

    # .envの値を設定の環境変数オーバーライドより先に読み込む
    load_dotenv()

    config = load_config(args.config)
    setup_logging(config["logging"])
    service = create_services(config)

    if args.command == "mark":
        try:
            return 0 if service.manual_attendance_check() else 1
        finally:
            service.close()

    if args.command == "status":
        try:
            status = service.get_status()
        finally:
            service.close()
        print(f"登録状態: {'有効' if status['registered'] else '無効'}")
        print(f"監視拠点数: {status['region_count']}")
        print(f"最終位置記録: {status['location_tracking']['timestamp'] or 'なし'}")
        return 0

    return run(service)


if __name__ == "__main__":
    sys.exit(main())
