from attendance_agent.services.models import AttemptResult, FailureReason, Outcome
from attendance_agent.services.notifier import AlertLevel, Notifier

SUCCESS_TITLE = "出勤打刻"
ERROR_TITLE = "打刻エラー"

MESSAGES = {
    Outcome.SUCCESS: "✅ 出勤打刻しました（{source}）",
    Outcome.SKIPPED_ALREADY_MARKED: "ℹ️ 本日の出勤打刻は完了しています",
    Outcome.SKIPPED_LEAVE: "🏖 本日は休暇・祝日のため打刻しません",
    Outcome.SKIPPED_LOCKED: "⏳ 打刻処理が実行中です。しばらくお待ちください",
}

ERROR_MESSAGES = {
    Outcome.SKIPPED_PERMISSION: "位置情報の権限がありません。設定アプリで「常に許可」にしてください",
    FailureReason.NO_TOKEN: "ログイン情報が見つかりません。再ログインしてください",
    FailureReason.LOCATION_UNAVAILABLE: "現在地を取得できませんでした。位置情報サービスを確認してください",
    FailureReason.NETWORK_FAILURE: "サーバーに接続できませんでした",
    FailureReason.SUBMIT_FAILED: "打刻の送信に失敗しました",
    FailureReason.UNEXPECTED_ERROR: "予期しないエラーが発生しました",
}

LOW_CONFIDENCE_NOTE = "（位置情報の精度が低い状態で打刻しました）"
MANUAL_CHECK_NOTE = "手動で確認してください"


def format_result(result: AttemptResult) -> tuple[str, AlertLevel]:
    """試行結果をアラート本文とレベルに変換する"""
    if result.outcome == Outcome.SKIPPED_PERMISSION:
        return ERROR_MESSAGES[Outcome.SKIPPED_PERMISSION], AlertLevel.ERROR

    if result.outcome == Outcome.FAILED:
        error = ERROR_MESSAGES.get(result.reason, ERROR_MESSAGES[FailureReason.UNEXPECTED_ERROR])
        if result.message:
            error = f"{error}（{result.message}）"
        return f"{error}。{MANUAL_CHECK_NOTE}", AlertLevel.ERROR

    msg = MESSAGES[result.outcome].format(source=result.source.value)
    if result.outcome == Outcome.SUCCESS and result.low_confidence:
        msg += LOW_CONFIDENCE_NOTE
    return msg, AlertLevel.INFO


def notify_result(result: AttemptResult, notifier: Notifier = None) -> bool:
    """打刻結果を利用者に通知する"""
    message, level = format_result(result)
    title = ERROR_TITLE if level == AlertLevel.ERROR else SUCCESS_TITLE
    return notifier.alert(title, message, level)
