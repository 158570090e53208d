# services/working_hours.py
from datetime import datetime

DEFAULT_WORKING_HOURS = {"weekdays": [0, 1, 2, 3, 4], "start_hour": 8, "end_hour": 11}


def _now() -> datetime:
    """テスト時にモック可能な現在時刻取得"""
    return datetime.now()


def is_within_working_hours(now: datetime = None, settings: dict = None) -> bool:
    """自動打刻の受付時間内か（既定: 月〜金 8:00〜10:59、端末のローカル時刻）"""
    if settings is None:
        settings = DEFAULT_WORKING_HOURS
    if now is None:
        now = _now()

    # weekday(): 月曜=0 ... 日曜=6
    if now.weekday() not in settings["weekdays"]:
        return False

    return settings["start_hour"] <= now.hour < settings["end_hour"]
