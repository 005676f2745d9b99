import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


OUTCOME_SUBJECTS = {
    "CONFIRMED": "Booking konsultasi terkonfirmasi",
    "CANCELLED": "Booking konsultasi dibatalkan",
    "EXPIRED": "Waktu pembayaran booking habis",
}


async def send_notification(recipient: str, subject: str, body: str, channel: str = "push") -> Dict[str, Any]:
    """Lightweight notification sender used by the reconciler.

    Delivery is owned by the notification service; this adapter only logs the
    hand-off. Failures of a real sender propagate to the caller.
    """
    logger.info(f"Sending {channel} notification to {recipient}: {subject}")
    return {"status": "sent", "recipient": recipient, "channel": channel}


async def notify_booking_outcome(booking) -> Dict[str, Any]:
    """Tell the booking's owner how their booking ended"""
    status = booking.status.value
    subject = OUTCOME_SUBJECTS.get(status, "Status booking diperbarui")
    body = (
        f"Booking {booking.id} pada {booking.booking_date.isoformat()} "
        f"{booking.start_time.strftime('%H:%M')}-{booking.end_time.strftime('%H:%M')}: "
        f"{booking.status.label}"
    )
    return await send_notification(str(booking.user_id), subject, body)
