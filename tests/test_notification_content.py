from typing import Any, Dict, get_type_hints

import pytest

from notification_content import (
    GENERIC_TEMPLATES,
    TEMPLATES,
    Channel,
    NotificationType,
    render_content,
    render_email,
    urgency_marker,
)

REQUEST_PAYLOAD = {
    "blood_group": "AB-",
    "patient_name": "Marie Dubois",
    "hospital_name": "Hopital Saint-Louis",
    "city": "Paris",
    "country": "FR",
    "contact_number": "+33100000000",
    "urgency_level": "high",
}


@pytest.mark.parametrize("channel", list(Channel))
def test_each_type_has_its_own_template(channel):
    bodies = {
        kind: render_content(channel, kind, "Alex", REQUEST_PAYLOAD, urgency="low")
        for kind in NotificationType
    }

    assert len(set(bodies.values())) == len(NotificationType)


def test_email_subjects_differ_per_type():
    subjects = {render_email(kind, "Alex", REQUEST_PAYLOAD).subject for kind in NotificationType}

    assert len(subjects) == len(NotificationType)


@pytest.mark.parametrize("urgency, marker", [
    ("high", "🚨 URGENT"),
    ("medium", "⚠️"),
])
@pytest.mark.parametrize("channel", [Channel.SMS, Channel.WHATSAPP])
def test_short_messages_carry_urgency_marker(channel, urgency, marker):
    text = render_content(channel, NotificationType.DONOR_MATCH_FOUND, "Alex", REQUEST_PAYLOAD, urgency)

    assert text.startswith(marker + " ")


def test_low_urgency_has_no_marker():
    text = render_content(Channel.SMS, NotificationType.DONOR_MATCH_FOUND, "Alex", REQUEST_PAYLOAD, "low")

    assert urgency_marker("low") == ""
    assert text.startswith("BloodLink:")


def test_email_body_has_no_marker():
    body = render_content(Channel.EMAIL, NotificationType.DONOR_MATCH_FOUND, "Alex", REQUEST_PAYLOAD, "high")

    assert "🚨 URGENT" not in body
    assert render_email(NotificationType.DONOR_MATCH_FOUND, "Alex", REQUEST_PAYLOAD, "high").subject.startswith("Urgent")


def test_donor_facing_match_message_lists_request_details():
    text = render_content(Channel.SMS, NotificationType.DONOR_MATCH_FOUND, "Camille", REQUEST_PAYLOAD, "high")

    assert "AB- blood needed at Hopital Saint-Louis, Paris" in text
    assert "Contact: +33100000000" in text


def test_requester_facing_match_message_reports_donor_count():
    payload = {**REQUEST_PAYLOAD, "donor_count": 4}

    text = render_content(Channel.SMS, NotificationType.DONOR_MATCH_FOUND, "Marie", payload, "high")
    email = render_email(NotificationType.DONOR_MATCH_FOUND, "Marie", payload, "high")

    assert "We found 4 matching donors" in text
    assert "4 potential donors" in email.html_body


def test_unknown_type_falls_back_to_generic_text():
    sms = render_content(Channel.SMS, "lab_results_ready", "Alex", {}, "low")
    email = render_email("lab_results_ready", "Alex", {})

    assert "You have a new notification" in sms
    assert email.subject == "BloodLink Notification"


def test_string_channel_and_type_are_accepted():
    text = render_content("sms", "blood_request_confirmation", "Marie", REQUEST_PAYLOAD, "low")

    assert "has been confirmed" in text


def test_unknown_channel_is_rejected():
    with pytest.raises(ValueError):
        render_content("pager", NotificationType.DONATION_REMINDER, "Alex", {})


def test_email_escapes_recipient_and_payload_values():
    payload = {**REQUEST_PAYLOAD, "patient_name": "<script>alert(1)</script>"}

    body = render_content(Channel.EMAIL, NotificationType.BLOOD_REQUEST_CONFIRMATION, "A & B", payload)

    assert "<script>" not in body
    assert "&lt;script&gt;" in body
    assert "A &amp; B" in body


def test_donation_reminder_for_first_time_donor():
    payload = {"blood_group": "O+", "days_since_last_donation": None}

    sms = render_content(Channel.SMS, NotificationType.DONATION_REMINDER, "Sam", payload, "low")
    wa = render_content(Channel.WHATSAPP, NotificationType.DONATION_REMINDER, "Sam", payload, "low")
    email = render_email(NotificationType.DONATION_REMINDER, "Sam", payload, "low")

    assert "first donation" in sms
    assert "First donation" in wa
    assert "first blood donation" in email.html_body
    assert "None" not in sms + wa + email.html_body


def test_donation_reminder_with_days():
    payload = {"blood_group": "O+", "days_since_last_donation": 90}

    sms = render_content(Channel.SMS, NotificationType.DONATION_REMINDER, "Sam", payload, "low")

    assert "90 days since last donation" in sms


def test_volunteer_whatsapp_omits_missing_motivation():
    text = render_content(Channel.WHATSAPP, NotificationType.VOLUNTEER_WELCOME, "Sam",
                          {"name": "Sam", "region": "Ile-de-France"}, "low")

    assert "Region: Ile-de-France" in text
    assert "Motivation" not in text


@pytest.mark.parametrize("channel", [Channel.SMS, Channel.WHATSAPP])
def test_short_message_templates_are_annotated(channel):
    templates = [fn for (_, ch), fn in TEMPLATES.items() if ch is channel]
    templates.append(GENERIC_TEMPLATES[channel])

    for fn in templates:
        assert get_type_hints(fn) == {
            "name": str,
            "data": Dict[str, Any],
            "urgency": str,
            "return": str,
        }, fn.__name__
