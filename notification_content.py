"""
Notification content templates
Builds email, SMS and WhatsApp text for every BloodLink notification type
"""

import html
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

SIGNATURE = "The BloodLink Team"


class NotificationType(Enum):
    BLOOD_REQUEST_CONFIRMATION = "blood_request_confirmation"
    DONOR_MATCH_FOUND = "donor_match_found"
    DONATION_REMINDER = "donation_reminder"
    APPOINTMENT_REMINDER = "appointment_reminder"
    VOLUNTEER_WELCOME = "volunteer_welcome"
    PARTNERSHIP_CONFIRMATION = "partnership_confirmation"
    DONOR_WELCOME = "donor_welcome"


class Channel(Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


@dataclass
class EmailContent:
    subject: str
    html_body: str


def urgency_marker(urgency: Optional[str]) -> str:
    """Prefix for short messages: an alert cue for high urgency"""
    if urgency == "high":
        return "🚨 URGENT"
    if urgency == "medium":
        return "⚠️"
    return ""


def _prefixed(marker: str, text: str) -> str:
    return f"{marker} {text}" if marker else text


def _e(value: Any) -> str:
    return html.escape(str(value)) if value is not None else ""


def _box(title: str, items, background: str) -> str:
    rows = "".join(f"<li>{item}</li>" for item in items if item)
    return (f'<div style="background: {background}; padding: 16px; border-radius: 8px; margin: 16px 0;">'
            f"<h3>{title}</h3><ul>{rows}</ul></div>")


def _email_page(heading: str, name: str, paragraphs, boxes=(), closing: str = "Best regards") -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #d73027;">{heading}</h2>
            <p>Dear <strong>{_e(name)}</strong>,</p>
            {body}
            {''.join(boxes)}
            <p>{closing},<br>{SIGNATURE}</p>
            <hr style="margin: 30px 0;">
            <p style="color: #999; font-size: 12px;">
                This is an automated message from BloodLink.
            </p>
        </div>
        """


# Email templates

def _email_request_confirmation(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    details = _box("Request Details:", [
        f"<strong>Blood Group:</strong> {_e(data.get('blood_group'))}",
        f"<strong>Patient:</strong> {_e(data.get('patient_name'))}",
        f"<strong>Hospital:</strong> {_e(data.get('hospital_name'))}",
        f"<strong>Location:</strong> {_e(data.get('city'))}, {_e(data.get('country'))}",
    ], "#fef2f2")
    return EmailContent(
        subject="🩸 Blood Request Confirmed - BloodLink",
        html_body=_email_page(
            "Blood Request Confirmed", name,
            ["Your blood request has been successfully submitted to our network.",
             "We're now searching for matching donors in your area. "
             "You'll be notified as soon as we find potential matches."],
            [details]),
    )


def _email_donor_match(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    if data.get("donor_count") is not None:
        steps = _box("Next Steps:", [
            "Log into your BloodLink account to view donor details",
            "Contact the donors directly using the provided information",
            "Coordinate with your hospital for the donation process",
        ], "#f0fdf4")
        return EmailContent(
            subject="🎯 Matching Donors Found - BloodLink",
            html_body=_email_page(
                "Great News! We Found Matching Donors", name,
                [f"We've found <strong>{_e(data.get('donor_count'))} potential donors</strong> "
                 f"who can help with your {_e(data.get('blood_group'))} blood request!",
                 "Time is precious - reach out to the donors as soon as possible!"],
                [steps], closing="Wishing you the best"),
        )

    details = _box("Request Details:", [
        f"<strong>Patient:</strong> {_e(data.get('patient_name'))}",
        f"<strong>Blood Group Required:</strong> {_e(data.get('blood_group'))}",
        f"<strong>Hospital:</strong> {_e(data.get('hospital_name'))}",
        f"<strong>Location:</strong> {_e(data.get('city'))}, {_e(data.get('country'))}",
        f"<strong>Urgency:</strong> {_e(data.get('urgency_level', urgency))}",
        f"<strong>Contact:</strong> {_e(data.get('contact_number'))}",
    ], "#f8f9fa")
    prefix = "Urgent " if urgency == "high" else ""
    return EmailContent(
        subject=f"{prefix}Blood Donation Request - {data.get('blood_group', '')} Blood Needed",
        html_body=_email_page(
            "Blood Donation Request", name,
            ["We have received a blood donation request that matches your profile. "
             "Your help could save a life!",
             "<strong>If you are available and willing to donate, please contact the "
             "requester directly using the contact information above.</strong>"],
            [details], closing="Thank you"),
    )


def _email_donation_reminder(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    days = data.get("days_since_last_donation")
    if days is None:
        opening = "You're eligible to make your first blood donation!"
    else:
        opening = (f"It's been {_e(days)} days since your last donation, which means "
                   "you're now eligible to donate blood again!")
    why = _box("Why Your Donation Matters:", [
        "Every donation can save up to 3 lives",
        "Blood cannot be manufactured - it can only come from generous donors like you",
        f"Your {_e(data.get('blood_group'))} blood type is always needed",
    ], "#eff6ff")
    return EmailContent(
        subject="🩸 You're Eligible to Donate Again - BloodLink",
        html_body=_email_page(
            "Ready to Save Another Life?", name,
            [opening, "Update your availability in the BloodLink app!"],
            [why], closing="With gratitude"),
    )


def _email_appointment_reminder(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    details = _box("Appointment Details:", [
        f"<strong>Date:</strong> {_e(data.get('appointment_date'))}",
        f"<strong>Time:</strong> {_e(data.get('appointment_time'))}",
        f"<strong>Location:</strong> {_e(data.get('hospital_name'))}, {_e(data.get('city'))}",
    ], "#fef3c7")
    prep = _box("Before You Donate:", [
        "Eat a healthy meal 2-3 hours before",
        "Drink plenty of water",
        "Get a good night's sleep",
        "Bring a valid ID",
    ], "#f0f9ff")
    return EmailContent(
        subject="📅 Donation Appointment Reminder - BloodLink",
        html_body=_email_page(
            "Appointment Reminder", name,
            ["This is a friendly reminder about your upcoming blood donation appointment."],
            [details, prep], closing="See you soon"),
    )


def _email_volunteer_welcome(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    motivation = data.get("motivation")
    profile = _box("Your Volunteer Profile:", [
        f"<strong>Name:</strong> {_e(data.get('name', name))}",
        f"<strong>Region:</strong> {_e(data.get('region'))}",
        f"<strong>Motivation:</strong> {_e(motivation)}" if motivation else "",
    ], "#f0f9ff")
    steps = _box("What's Next?", [
        "Our volunteer coordinator will contact you within 48 hours",
        "You'll receive training materials and guidelines",
        "Start making a difference in your community!",
    ], "#fef3c7")
    return EmailContent(
        subject="🎉 Welcome to BloodLink Volunteer Team!",
        html_body=_email_page(
            "Welcome to the BloodLink Family!", name,
            ["Thank you for joining our volunteer team! Your commitment to helping save "
             "lives is truly inspiring."],
            [profile, steps]),
    )


def _email_partnership_confirmation(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    details = _box("Your Inquiry Details:", [
        f"<strong>Organization:</strong> {_e(data.get('organization_name'))}",
        f"<strong>Type:</strong> {_e(data.get('organization_type'))}",
        f"<strong>Contact:</strong> {_e(data.get('contact_name', name))}",
    ], "#f0fdf4")
    return EmailContent(
        subject="🤝 Partnership Inquiry Received - BloodLink",
        html_body=_email_page(
            "Thank You for Your Partnership Interest!", name,
            [f"We've received your partnership inquiry for "
             f"<strong>{_e(data.get('organization_name'))}</strong>.",
             "Our partnership team will review your inquiry within 24 hours and "
             "schedule a call to discuss collaboration opportunities."],
            [details]),
    )


def _email_donor_welcome(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    profile = _box("Your Donor Profile:", [
        f"<strong>Blood Group:</strong> {_e(data.get('blood_group'))}",
        f"<strong>Location:</strong> {_e(data.get('city'))}, {_e(data.get('country'))}",
    ], "#fef2f2")
    return EmailContent(
        subject="🎉 Welcome to BloodLink!",
        html_body=_email_page(
            "Welcome to BloodLink!", name,
            ["You're now part of our network of life-savers. Each donation can help "
             "save up to 3 lives.",
             "We'll contact you when a patient near you needs your blood type."],
            [profile], closing="Thank you for being a hero"),
    )


def _email_generic(name: str, data: Dict[str, Any], urgency: str) -> EmailContent:
    return EmailContent(
        subject="BloodLink Notification",
        html_body=_email_page("BloodLink Notification", name,
                              ["You have a new notification from BloodLink."]),
    )


# SMS templates

def _sms_request_confirmation(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"BloodLink: Your blood request for {data.get('blood_group')} at "
            f"{data.get('hospital_name')}, {data.get('city')} has been confirmed. "
            f"We're searching for donors now. Stay strong!")


def _sms_donor_match(name: str, data: Dict[str, Any], urgency: str) -> str:
    if data.get("donor_count") is not None:
        return (f"BloodLink: Great news {name}! We found {data.get('donor_count')} matching "
                f"donors for your blood request. Check the app to contact them immediately.")
    return (f"BloodLink: {data.get('blood_group')} blood needed at {data.get('hospital_name')}, "
            f"{data.get('city')}. Patient: {data.get('patient_name')}. "
            f"Contact: {data.get('contact_number')}. Can you help save a life?")


def _sms_donation_reminder(name: str, data: Dict[str, Any], urgency: str) -> str:
    days = data.get("days_since_last_donation")
    if days is None:
        status = "You're eligible to make your first donation"
    else:
        status = f"You're eligible to donate again ({days} days since last donation)"
    return f"BloodLink: Hi {name}! {status}. Update your availability in the app!"


def _sms_appointment_reminder(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"BloodLink: Reminder - your donation appointment is on {data.get('appointment_date')} "
            f"at {data.get('appointment_time')}, {data.get('hospital_name')}. "
            f"Eat well, hydrate, and bring ID.")


def _sms_volunteer_welcome(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"BloodLink: Welcome to our volunteer team, {name}! Our coordinator will "
            f"contact you within 48 hours with next steps.")


def _sms_partnership_confirmation(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"BloodLink: Thank you for your partnership inquiry, {data.get('organization_name')}! "
            f"Our team will contact you within 24 hours.")


def _sms_donor_welcome(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"BloodLink: Welcome, {name}! Your {data.get('blood_group')} blood can help save "
            f"up to 3 lives per donation. Thank you for joining!")


def _sms_generic(name: str, data: Dict[str, Any], urgency: str) -> str:
    return "BloodLink: You have a new notification. Check the app for details."


# WhatsApp templates

def _wa_request_confirmation(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"🩸 *BloodLink - Request Confirmed*\n\nHi {name}!\n\n"
            f"Your blood request has been submitted:\n"
            f"• Blood Group: {data.get('blood_group')}\n"
            f"• Patient: {data.get('patient_name')}\n"
            f"• Hospital: {data.get('hospital_name')}\n"
            f"• Location: {data.get('city')}, {data.get('country')}\n\n"
            f"We're searching our network for donors. You'll hear from us soon!")


def _wa_donor_match(name: str, data: Dict[str, Any], urgency: str) -> str:
    if data.get("donor_count") is not None:
        return (f"🎯 *BloodLink - Donors Found!*\n\nHi {name}!\n\n"
                f"We found *{data.get('donor_count')} potential donors* for your blood request.\n\n"
                f"✅ Check the BloodLink app now\n"
                f"✅ Contact donors immediately\n"
                f"✅ Coordinate with your hospital")
    return (f"🩸 *BloodLink - Blood Needed*\n\nHi {name}!\n\n"
            f"• Blood Group: *{data.get('blood_group')}*\n"
            f"• Hospital: {data.get('hospital_name')}, {data.get('city')}\n"
            f"• Patient: {data.get('patient_name')}\n"
            f"• Contact: {data.get('contact_number')}\n\n"
            f"Can you help save a life?")


def _wa_donation_reminder(name: str, data: Dict[str, Any], urgency: str) -> str:
    days = data.get("days_since_last_donation")
    days_line = "First donation" if days is None else f"{days}"
    return (f"🩸 *BloodLink - Ready to Donate?*\n\nHi {name}!\n\n"
            f"You're eligible to donate! 🎉\n\n"
            f"• Days since last donation: {days_line}\n"
            f"• Your blood type: {data.get('blood_group')}\n"
            f"• Lives you can save: Up to 3\n\n"
            f"Update your availability in the app!")


def _wa_appointment_reminder(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"📅 *BloodLink - Appointment Reminder*\n\nHi {name}!\n\n"
            f"• Date: {data.get('appointment_date')}\n"
            f"• Time: {data.get('appointment_time')}\n"
            f"• Location: {data.get('hospital_name')}, {data.get('city')}\n\n"
            f"*Before you come:*\n✅ Eat a healthy meal\n✅ Drink plenty of water\n✅ Bring valid ID")


def _wa_volunteer_welcome(name: str, data: Dict[str, Any], urgency: str) -> str:
    lines = [f"🎉 *BloodLink - Welcome Volunteer!*\n\nHi {name}!\n",
             f"• Region: {data.get('region')}"]
    if data.get("motivation"):
        lines.append(f"• Motivation: {data.get('motivation')}")
    lines.append("\nOur coordinator will contact you in 48hrs. Thank you for joining!")
    return "\n".join(lines)


def _wa_partnership_confirmation(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"🤝 *BloodLink - Partnership Inquiry*\n\nHi {name}!\n\n"
            f"• Organization: {data.get('organization_name')}\n"
            f"• Type: {data.get('organization_type')}\n\n"
            f"We'll review your inquiry within 24 hours.")


def _wa_donor_welcome(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"🎉 *Welcome to BloodLink!*\n\nHi {name}!\n\n"
            f"• Blood Group: {data.get('blood_group')}\n"
            f"• Location: {data.get('city')}, {data.get('country')}\n\n"
            f"We'll reach out when someone near you needs your help.")


def _wa_generic(name: str, data: Dict[str, Any], urgency: str) -> str:
    return (f"*BloodLink Notification*\n\nHi {name}!\n\n"
            f"You have a new notification. Check the BloodLink app for details.")


TemplateFn = Callable[[str, Dict[str, Any], str], Union[str, EmailContent]]

TEMPLATES: Dict[Tuple[NotificationType, Channel], TemplateFn] = {
    (NotificationType.BLOOD_REQUEST_CONFIRMATION, Channel.EMAIL): _email_request_confirmation,
    (NotificationType.BLOOD_REQUEST_CONFIRMATION, Channel.SMS): _sms_request_confirmation,
    (NotificationType.BLOOD_REQUEST_CONFIRMATION, Channel.WHATSAPP): _wa_request_confirmation,
    (NotificationType.DONOR_MATCH_FOUND, Channel.EMAIL): _email_donor_match,
    (NotificationType.DONOR_MATCH_FOUND, Channel.SMS): _sms_donor_match,
    (NotificationType.DONOR_MATCH_FOUND, Channel.WHATSAPP): _wa_donor_match,
    (NotificationType.DONATION_REMINDER, Channel.EMAIL): _email_donation_reminder,
    (NotificationType.DONATION_REMINDER, Channel.SMS): _sms_donation_reminder,
    (NotificationType.DONATION_REMINDER, Channel.WHATSAPP): _wa_donation_reminder,
    (NotificationType.APPOINTMENT_REMINDER, Channel.EMAIL): _email_appointment_reminder,
    (NotificationType.APPOINTMENT_REMINDER, Channel.SMS): _sms_appointment_reminder,
    (NotificationType.APPOINTMENT_REMINDER, Channel.WHATSAPP): _wa_appointment_reminder,
    (NotificationType.VOLUNTEER_WELCOME, Channel.EMAIL): _email_volunteer_welcome,
    (NotificationType.VOLUNTEER_WELCOME, Channel.SMS): _sms_volunteer_welcome,
    (NotificationType.VOLUNTEER_WELCOME, Channel.WHATSAPP): _wa_volunteer_welcome,
    (NotificationType.PARTNERSHIP_CONFIRMATION, Channel.EMAIL): _email_partnership_confirmation,
    (NotificationType.PARTNERSHIP_CONFIRMATION, Channel.SMS): _sms_partnership_confirmation,
    (NotificationType.PARTNERSHIP_CONFIRMATION, Channel.WHATSAPP): _wa_partnership_confirmation,
    (NotificationType.DONOR_WELCOME, Channel.EMAIL): _email_donor_welcome,
    (NotificationType.DONOR_WELCOME, Channel.SMS): _sms_donor_welcome,
    (NotificationType.DONOR_WELCOME, Channel.WHATSAPP): _wa_donor_welcome,
}

GENERIC_TEMPLATES: Dict[Channel, TemplateFn] = {
    Channel.EMAIL: _email_generic,
    Channel.SMS: _sms_generic,
    Channel.WHATSAPP: _wa_generic,
}


def _coerce_type(notification_type) -> Optional[NotificationType]:
    if isinstance(notification_type, NotificationType):
        return notification_type
    try:
        return NotificationType(notification_type)
    except ValueError:
        return None


def _coerce_channel(channel) -> Channel:
    if isinstance(channel, Channel):
        return channel
    try:
        return Channel(channel)
    except ValueError:
        raise ValueError(f"Unknown notification channel: {channel!r}")


def _lookup(notification_type, channel: Channel) -> TemplateFn:
    kind = _coerce_type(notification_type)
    if kind is None:
        return GENERIC_TEMPLATES[channel]
    return TEMPLATES.get((kind, channel), GENERIC_TEMPLATES[channel])


def render_email(notification_type, recipient_name: str, payload: Dict[str, Any],
                 urgency: str = "medium") -> EmailContent:
    """Subject and HTML body for the email channel"""
    return _lookup(notification_type, Channel.EMAIL)(recipient_name, payload or {}, urgency)


def render_content(channel, notification_type, recipient_name: str, payload: Dict[str, Any],
                   urgency: str = "medium") -> str:
    """
    Render the message body for one channel.

    Email returns the HTML body (use ``render_email`` for the subject too).
    SMS and WhatsApp return text prefixed with the urgency marker.
    Unknown notification types get a generic message; unknown channels
    raise ValueError.
    """
    channel = _coerce_channel(channel)
    if channel is Channel.EMAIL:
        return render_email(notification_type, recipient_name, payload, urgency).html_body

    text = _lookup(notification_type, channel)(recipient_name, payload or {}, urgency)
    return _prefixed(urgency_marker(urgency), text)
