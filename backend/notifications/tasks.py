from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()


def _render(template: str, context: dict) -> str:
    """Render a template relative to the notifications app."""
    return render_to_string(template, context).strip()


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    context = {
        "site_name": getattr(settings, "SITE_NAME", "DriveShare"),
        "site_url": frontend_origin,
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    about: tuple[str, int] | None = None,
    error: str | None = None,
) -> None:
    subject_type, subject_id = about or ("", None)
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            subject_type=subject_type,
            subject_id=subject_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _prepare_email_bodies(subject: str, template: str, context: dict | None) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context or {})
    context_with_brand["subject"] = subject
    body = _render(f"email/{template}", context_with_brand)
    html_template = f"email/{template.rsplit('.', 1)[0]}.html"
    try:
        html_body = _render(html_template, context_with_brand)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
    about: tuple[str, int] | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            NotificationLog.Channel.EMAIL,
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            about=about,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    text_body, html_body = _prepare_email_bodies(subject, template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html_body:
        message.attach_alternative(html_body, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id, "about": about},
        )
        _log_notification(
            NotificationLog.Channel.EMAIL,
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            about=about,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        NotificationLog.Channel.EMAIL,
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
        about=about,
    )
    return True


def _display_name(user: Optional[User]) -> str:
    if not user:
        return "there"
    full_name = (user.get_full_name() or "").strip()
    return full_name or user.username


@shared_task(queue="emails")
def send_trip_summary_email(booking_id: int) -> None:
    """Email the guest the itemized charges computed when their trip ended."""
    from trip_charges.models import TripCharge

    trip_charge = (
        TripCharge.objects.select_related("booking", "booking__guest", "booking__listing")
        .filter(booking_id=booking_id)
        .first()
    )
    if trip_charge is None:
        logger.warning("notifications: no trip charge for booking %s", booking_id)
        return

    booking = trip_charge.booking
    guest = booking.guest
    context = {
        "guest_name": _display_name(guest),
        "vehicle": booking.listing.title,
        "breakdown": trip_charge.charges.get("breakdown") or [],
        "subtotal": trip_charge.subtotal,
        "taxes": trip_charge.taxes,
        "total": trip_charge.total_charges,
        "charge_status": trip_charge.get_charge_status_display(),
    }
    _send_email_logged(
        "trip_summary",
        to_email=guest.email,
        subject=f"Trip summary for your {booking.listing.title}",
        template="trip_summary.txt",
        context=context,
        user_id=guest.id,
        booking_id=booking.id,
    )


@shared_task(queue="emails")
def send_trip_charge_resolution_email(trip_charge_id: int) -> None:
    """Tell the guest how their disputed trip charges were resolved."""
    from trip_charges.models import TripCharge

    try:
        trip_charge = TripCharge.objects.select_related("booking", "booking__guest").get(
            pk=trip_charge_id
        )
    except TripCharge.DoesNotExist:
        logger.warning("notifications: trip charge %s no longer exists", trip_charge_id)
        return

    guest = trip_charge.booking.guest
    context = {
        "guest_name": _display_name(guest),
        "resolution": trip_charge.dispute_resolution,
        "status": trip_charge.get_charge_status_display(),
        "total": trip_charge.total_charges,
        "original_total": trip_charge.original_total,
    }
    _send_email_logged(
        "trip_charge_resolution",
        to_email=guest.email,
        subject="Your trip charge dispute has been reviewed",
        template="trip_charge_resolution.txt",
        context=context,
        user_id=guest.id,
        booking_id=trip_charge.booking_id,
        about=(NotificationLog.Subject.TRIP_CHARGE, trip_charge.pk),
    )


@shared_task(queue="emails")
def send_claim_filed_email(claim_id: int) -> None:
    """Notify the guest that a claim was filed against their trip."""
    from claims.models import Claim

    try:
        claim = Claim.objects.select_related("booking", "booking__guest").get(pk=claim_id)
    except Claim.DoesNotExist:
        logger.warning("notifications: claim %s no longer exists", claim_id)
        return

    guest = claim.booking.guest
    context = {
        "guest_name": _display_name(guest),
        "claim": claim,
        "claim_type": claim.get_type_display(),
        "response_deadline": claim.guest_response_deadline,
        "guest_at_fault": claim.guest_at_fault,
    }
    _send_email_logged(
        "claim_filed",
        to_email=guest.email,
        subject=f"A {claim.get_type_display().lower()} claim was filed for your trip",
        template="claim_filed.txt",
        context=context,
        user_id=guest.id,
        booking_id=claim.booking_id,
        about=(NotificationLog.Subject.CLAIM, claim.pk),
    )


@shared_task(queue="emails")
def send_claim_decision_email(claim_id: int) -> None:
    """Tell the host whether their claim was approved or denied."""
    from claims.models import Claim

    try:
        claim = Claim.objects.select_related("booking", "host").get(pk=claim_id)
    except Claim.DoesNotExist:
        logger.warning("notifications: claim %s no longer exists", claim_id)
        return

    context = {
        "host_name": _display_name(claim.host),
        "claim": claim,
        "status": claim.get_status_display(),
        "approved_amount": claim.approved_amount,
    }
    _send_email_logged(
        "claim_decision",
        to_email=claim.host.email,
        subject=f"Your claim #{claim.pk} was {claim.get_status_display().lower()}",
        template="claim_decision.txt",
        context=context,
        user_id=claim.host_id,
        booking_id=claim.booking_id,
        about=(NotificationLog.Subject.CLAIM, claim.pk),
    )


@shared_task(queue="emails")
def send_moderation_notice_email(action_id: int) -> None:
    """Email the account holder about a warning, suspension, ban or reinstatement."""
    from operator_users.models import ModerationAction

    try:
        action = ModerationAction.objects.select_related("user").get(pk=action_id)
    except ModerationAction.DoesNotExist:
        logger.warning("notifications: moderation action %s no longer exists", action_id)
        return

    user = action.user
    context = {
        "name": _display_name(user),
        "action": action,
        "action_label": action.get_action_display(),
        "roles": action.applied_roles,
        "expires_at": action.expires_at,
    }
    _send_email_logged(
        "moderation_notice",
        to_email=user.email,
        subject=f"Account notice: {action.get_action_display()}",
        template="moderation_notice.txt",
        context=context,
        user_id=user.id,
        about=(NotificationLog.Subject.MODERATION_ACTION, action.pk),
    )


@shared_task(queue="emails")
def send_appeal_decision_email(appeal_id: int) -> None:
    from operator_users.models import Appeal

    try:
        appeal = Appeal.objects.select_related("user", "action").get(pk=appeal_id)
    except Appeal.DoesNotExist:
        logger.warning("notifications: appeal %s no longer exists", appeal_id)
        return

    context = {
        "name": _display_name(appeal.user),
        "appeal": appeal,
        "status": appeal.get_status_display(),
    }
    _send_email_logged(
        "appeal_decision",
        to_email=appeal.user.email,
        subject=f"Your appeal was {appeal.get_status_display().lower()}",
        template="appeal_decision.txt",
        context=context,
        user_id=appeal.user_id,
        about=(NotificationLog.Subject.APPEAL, appeal.pk),
    )
