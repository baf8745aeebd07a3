"""Notification text builders.

Each builder returns ``(title, body)``; wording is Vietnamese because every
recipient (parents, nurses, managers) reads it in the school's language.
"""

from __future__ import annotations

from datetime import date, datetime, time

from schoolmed.models import Priority

OVERDUE_REASON = "Tự động đánh dấu - quá thời gian quy định"
QUICK_COMPLETE_NOTE = "Hoàn thành nhanh"
ABSENT_NOTE = "Học sinh vắng mặt"
DISCONTINUED_NOTE = "Thuốc đã ngưng sử dụng"
COMPLETED_ORDER_NOTE = "Đơn thuốc đã hoàn thành"

_PRIORITY_TEXT = {
    Priority.CRITICAL: "Rất quan trọng",
    Priority.HIGH: "Quan trọng",
    Priority.NORMAL: "Bình thường",
    Priority.LOW: "Thấp",
}


def _hhmm(at: time) -> str:
    return at.strftime("%H:%M")


def _ddmmyyyy(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def priority_text(priority: Priority) -> str:
    return _PRIORITY_TEXT.get(priority, "Không xác định")


def reminder_urgency(priority: Priority, *, immediate: bool) -> str:
    if priority == Priority.CRITICAL:
        return "🚨 KHẨN CẤP" if immediate else "🚨 RẤT QUAN TRỌNG"
    if priority == Priority.HIGH:
        return "⚠️ QUAN TRỌNG" if immediate else "⚠️ Ưu tiên cao"
    return "📅 Nhắc nhở"


def build_parent_reminder(
    *,
    student_name: str,
    medication_name: str,
    dosage: str,
    due_at: time,
    priority: Priority,
    immediate: bool,
) -> tuple[str, str]:
    title = f"{reminder_urgency(priority, immediate=immediate)} - Nhắc nhở uống thuốc"
    lead = "ngay bây giờ" if immediate else f"lúc {_hhmm(due_at)}"
    body = (
        f"Con em {student_name} cần uống thuốc '{medication_name}' {lead}.\n"
        f"Liều lượng: {dosage}\n"
        f"Mức độ ưu tiên: {priority_text(priority)}"
    )
    return title, body


def build_staff_reminder(
    *,
    student_name: str,
    medication_name: str,
    dosage: str,
    due_at: time,
    priority: Priority,
    immediate: bool,
) -> tuple[str, str]:
    title = f"🚨 {reminder_urgency(priority, immediate=immediate)}"
    body = (
        f"Học sinh {student_name} cần được cho uống thuốc '{medication_name}' "
        f"lúc {_hhmm(due_at)}.\n"
        f"Liều lượng: {dosage}\n"
        f"Mức độ ưu tiên: {priority_text(priority)}"
    )
    return title, body


def build_administration_notice(
    *,
    student_name: str,
    medication_name: str,
    actual_dosage: str,
    administered_at: datetime,
    refused: bool,
    refusal_reason: str | None,
    side_effects: str | None,
) -> tuple[str, str]:
    title = f"Thông báo sử dụng thuốc - {student_name}"
    if refused:
        status_line = (
            f"Con em đã TỪ CHỐI uống thuốc '{medication_name}'."
            f" Lý do: {refusal_reason or 'không rõ'}"
        )
    else:
        status_line = (
            f"Con em đã được cho uống thuốc '{medication_name}' "
            f"({actual_dosage}) lúc {administered_at.strftime('%H:%M %d/%m/%Y')}."
        )
    lines = [f"Con em {student_name}:", status_line]
    if side_effects:
        lines.append(f"Tác dụng phụ quan sát được: {side_effects}")
    return title, "\n".join(lines)


def build_low_stock_alert(
    *, student_name: str, medication_name: str, remaining: int
) -> tuple[str, str]:
    icon = "🚨" if remaining <= 1 else "⚠️"
    title = f"{icon} Thuốc sắp hết - {student_name}"
    body = (
        "THÔNG BÁO SẮP HẾT THUỐC\n\n"
        f"Thuốc '{medication_name}' của con em {student_name} chỉ còn {remaining} liều.\n"
        "Vui lòng gửi thêm thuốc cho nhà trường."
    )
    return title, body


def build_absent_notice(
    *, student_name: str, medication_name: str, scheduled_date: date, scheduled_time: time
) -> tuple[str, str]:
    title = "Thông báo - Con em vắng mặt"
    body = (
        f"Con em {student_name} vắng mặt nên không thể uống thuốc '{medication_name}' "
        f"theo lịch lúc {_hhmm(scheduled_time)} ngày {_ddmmyyyy(scheduled_date)}."
    )
    return title, body


def missed_dose_advice(priority: Priority) -> tuple[str, str]:
    """Return ``(icon, advice)`` scaled to how much a missed dose matters."""
    if priority == Priority.CRITICAL:
        return "🚨", "LIÊN HỆ NGAY bác sĩ điều trị."
    if priority == Priority.HIGH:
        return "⚠️", "Khuyến nghị liên hệ bác sĩ để được tư vấn."
    if priority == Priority.NORMAL:
        return "📋", "Vui lòng theo dõi tình trạng của con em."
    return "ℹ️", "Thông tin để Quý phụ huynh nắm được."


def build_missed_notice(
    *,
    student_name: str,
    medication_name: str,
    scheduled_date: date,
    scheduled_time: time,
    reason: str,
    priority: Priority,
) -> tuple[str, str]:
    icon, advice = missed_dose_advice(priority)
    title = f"{icon} CẢNH BÁO - Con em bỏ lỡ thuốc"
    body = (
        f"Con em {student_name} đã bỏ lỡ liều thuốc '{medication_name}' "
        f"lúc {_hhmm(scheduled_time)} ngày {_ddmmyyyy(scheduled_date)}.\n"
        f"Lý do: {reason}\n"
        f"{advice}"
    )
    return title, body


def build_order_decision(
    *, student_name: str, medication_name: str, approved: bool, reason: str | None
) -> tuple[str, str]:
    if approved:
        return (
            f"Yêu cầu thuốc đã được duyệt - {student_name}",
            f"Thuốc '{medication_name}' của con em {student_name} đã được y tá phê duyệt.",
        )
    return (
        f"Yêu cầu thuốc bị từ chối - {student_name}",
        f"Thuốc '{medication_name}' của con em {student_name} bị từ chối. "
        f"Lý do: {reason or 'không rõ'}",
    )


def build_discontinued_notice(
    *, student_name: str, medication_name: str, reason: str | None
) -> tuple[str, str]:
    title = f"Ngưng sử dụng thuốc - {student_name}"
    body = f"Thuốc '{medication_name}' của con em {student_name} đã ngưng sử dụng."
    if reason:
        body += f" Lý do: {reason}"
    return title, body


def build_expiry_warning(
    *, student_name: str, medication_name: str, expiry_date: date, days_left: int
) -> tuple[str, str]:
    title = f"Thuốc sắp hết hạn - {student_name}"
    body = (
        f"Thuốc '{medication_name}' của con em {student_name} sẽ hết hạn vào "
        f"{_ddmmyyyy(expiry_date)} (còn {days_left} ngày). "
        "Vui lòng gửi thuốc mới nếu con em cần tiếp tục sử dụng."
    )
    return title, body


def build_incident_escalation(
    *, student_name: str, code: str | None, description: str, waiting_seconds: int
) -> tuple[str, str]:
    title = f"Sự kiện y tế cần can thiệp - {student_name}"
    minutes, seconds = divmod(waiting_seconds, 60)
    body = (
        f"Sự kiện y tế #{code or '-'} của học sinh {student_name} "
        f"chưa có người xử lý sau {minutes} phút {seconds} giây.\n"
        f"Mô tả: {description}\n"
        "Vui lòng phân công nhân viên y tế ngay."
    )
    return title, body


def build_incident_reminder(
    *, student_name: str, code: str | None, assigned_at: datetime
) -> tuple[str, str]:
    title = f"Sự kiện y tế đang xử lý - {student_name}"
    body = (
        f"Bạn đang xử lý sự kiện y tế #{code or '-'} của học sinh {student_name} "
        f"từ {assigned_at.strftime('%H:%M')}. "
        "Vui lòng cập nhật kết quả khi hoàn tất."
    )
    return title, body
