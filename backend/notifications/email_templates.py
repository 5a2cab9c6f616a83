"""Built-in email templates that ``send_email`` steps can reference by id.

A step that sets ``template_id`` without its own body takes the template's
subject and body; either can be overridden on the step. Placeholders use the
same ``{{ path }}`` syntax as step configs.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EmailTemplate:
    id: str
    name: str
    category: str
    subject: str
    body: str


_TEMPLATES = [
    EmailTemplate(
        id="inquiry-response",
        name="Initial Inquiry Response",
        category="inquiry",
        subject="Thank you for reaching out, {{record.first_name}}!",
        body=(
            "Hi {{record.first_name}},\n\n"
            "Thank you so much for reaching out! We're thrilled that you're considering "
            "doula support for your birth journey.\n\n"
            "We'd love to learn more about you and your hopes for your birth experience. "
            "Reply to this email with a few times that work for a free consultation call.\n\n"
            "Warmly,\nYour doula team"
        ),
    ),
    EmailTemplate(
        id="inquiry-follow-up",
        name="Follow-up After No Response",
        category="inquiry",
        subject="Checking in, {{record.first_name}}",
        body=(
            "Hi {{record.first_name}},\n\n"
            "We wanted to follow up on our previous email. Life gets busy, especially "
            "when you're expecting!\n\n"
            "If you have any questions or would like to schedule a consultation, "
            "we're here whenever you're ready.\n\n"
            "Warmly,\nYour doula team"
        ),
    ),
    EmailTemplate(
        id="consultation-confirmed",
        name="Consultation Booking Confirmation",
        category="booking",
        subject="Your consultation is confirmed for {{record.start_time}}",
        body=(
            "Hi {{record.first_name}},\n\n"
            "Great news! Your consultation is confirmed for {{record.start_time}}.\n\n"
            "Before our call, think about what matters most to you about your birth "
            "experience and any questions about doula support.\n\n"
            "We're looking forward to meeting you!"
        ),
    ),
    EmailTemplate(
        id="agreement-ready",
        name="Service Agreement Sent",
        category="booking",
        subject="Your birth doula services agreement is ready",
        body=(
            "Hi {{record.first_name}},\n\n"
            "We're so excited to welcome you as a client! Your services agreement is "
            "ready for review and signature in your client portal.\n\n"
            "If you have any questions about the agreement, just reply to this email."
        ),
    ),
    EmailTemplate(
        id="prenatal-reminder",
        name="Prenatal Visit Reminder",
        category="reminder",
        subject="Reminder: prenatal visit {{record.start_time}}",
        body=(
            "Hi {{record.first_name}},\n\n"
            "This is a friendly reminder that we have a prenatal visit scheduled for "
            "{{record.start_time}}.\n\n"
            "If you need to reschedule, please let us know as soon as possible."
        ),
    ),
]

EMAIL_TEMPLATES: dict[str, EmailTemplate] = {t.id: t for t in _TEMPLATES}


def get_email_template(template_id: Optional[str]) -> Optional[EmailTemplate]:
    """Look a template up by id, or by its display name."""
    if not template_id:
        return None
    template = EMAIL_TEMPLATES.get(template_id)
    if template is None:
        template = next((t for t in _TEMPLATES if t.name == template_id), None)
    return template
