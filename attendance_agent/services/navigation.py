import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

AUTO_MARK_ATTENDANCE_PAGE = "autoMarkAttendance"


class NavigationTarget(str, Enum):
    ATTENDANCE = "attendance"
    HR = "hr"
    CAB = "cab"
    PROFILE = "profile"
    DRIVER = "driver"
    BDT = "bdt"
    MEDICAL = "medical"
    SCOUT_BOY = "scout_boy"
    REMINDER = "reminder"
    BUP = "bup"
    SITE_MANAGER = "site_manager"
    EMPLOYEE_MANAGEMENT = "employee_management"
    DRIVER_MANAGER = "driver_manager"
    HR_MANAGER = "hr_manager"
    HR_EMPLOYEE_MANAGEMENT = "hr_employee_management"
    AUTO_MARK_ATTENDANCE = "auto_mark_attendance"


# 通知ペイロードの値（小文字化後）-> 遷移先
PAGE_TABLE = {target.value: target for target in NavigationTarget}
PAGE_TABLE.update({
    "mediclaim": NavigationTarget.MEDICAL,
    "scoutboy": NavigationTarget.SCOUT_BOY,
    AUTO_MARK_ATTENDANCE_PAGE.lower(): NavigationTarget.AUTO_MARK_ATTENDANCE,
})


def resolve_target(payload: Optional[dict]) -> Optional[NavigationTarget]:
    """通知ペイロードの go_to / page を遷移先に変換する。不明な値はNone"""
    if not payload:
        return None
    page = payload.get("go_to") or payload.get("page")
    if not isinstance(page, str) or not page:
        return None
    target = PAGE_TABLE.get(page.strip().lower())
    if target is None:
        logger.info("不明な遷移先です: %s", page)
    return target


class NotificationRouter:
    """通知の遷移先を処理する。打刻用の予約値は画面遷移ではなく手動打刻を起動する"""

    def __init__(self, manual_trigger, navigate: Callable[[NavigationTarget], None] = None):
        self._manual_trigger = manual_trigger
        self._navigate = navigate

    def handle(self, payload: Optional[dict]) -> Optional[NavigationTarget]:
        target = resolve_target(payload)
        if target is None:
            return None

        if target == NavigationTarget.AUTO_MARK_ATTENDANCE:
            logger.info("通知から自動打刻を実行します")
            self._manual_trigger.trigger(show_alert=True)
        elif self._navigate is not None:
            self._navigate(target)
        return target
