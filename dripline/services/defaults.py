"""
Built-in drip campaigns installed by CatalogService.seed_default_sequences.
"""


def _email(delay_value: int, delay_unit: str, subject: str, body: str) -> dict:
    return {
        "delay_type": "after" if delay_value else "immediate",
        "delay_value": delay_value,
        "delay_unit": delay_unit,
        "channel": "email",
        "email_subject": subject,
        "email_body": body,
    }


def _sms(delay_value: int, delay_unit: str, body: str) -> dict:
    return {
        "delay_type": "after" if delay_value else "immediate",
        "delay_value": delay_value,
        "delay_unit": delay_unit,
        "channel": "sms",
        "sms_body": body,
    }


def _both(delay_value: int, delay_unit: str, subject: str, body: str, sms_body: str) -> dict:
    return {
        **_email(delay_value, delay_unit, subject, body),
        "channel": "both",
        "sms_body": sms_body,
    }


DEFAULT_DRIP_SEQUENCES = [
    {
        "pipeline_id": "sales",
        "stage_id": "cold_leads",
        "name": "New Lead Follow Up",
        "is_enabled": True,
        "steps": [
            _both(
                0, "minutes",
                "re: Your Quote Request",
                "Hi {first-name}, it's {salesperson-name} with {company-name}. Thanks for reaching out. "
                "Which day this week suits you for a free on-site estimate?",
                "Hi {first-name}, it's {salesperson-name} with {company-name}. Thanks for reaching out. "
                "Which day this week suits you for a free on-site estimate?",
            ),
            _email(
                2, "days",
                "We're eager to help!",
                "We'd like to get your free estimate on the calendar this week. What day and time work for you?",
            ),
            _sms(3, "days", "Hi {first-name}, we'd love to book your estimate. Does mid-week work for you?"),
            _email(
                3, "days",
                "Still interested in a quote?",
                "Checking in to see if you'd still like a quote. We can stop by whenever suits you.",
            ),
            _email(
                14, "days",
                "What date and time works for you?",
                "We can still help with your project. When would be a good time for a quick walkthrough?",
            ),
        ],
    },
    {
        "pipeline_id": "sales",
        "stage_id": "estimate_scheduled",
        "name": "Appointment Information",
        "is_enabled": True,
        "steps": [
            _both(
                0, "minutes",
                "Your appointment with {company-name}",
                "Hi {first-name}, your estimate with {company-name} is booked. "
                "{salesperson-name} will see you then. Reply here if anything changes.",
                "Hi {first-name}, your estimate with {company-name} is booked. Reply here if anything changes.",
            ),
        ],
    },
    {
        "pipeline_id": "sales",
        "stage_id": "in_draft",
        "name": "Proposal Draft",
        "is_enabled": True,
        "steps": [
            _email(
                1, "days",
                "We're working on your proposal!",
                "Hi {first-name}, thanks for having us out. We're putting your proposal together now.",
            ),
        ],
    },
    {
        "pipeline_id": "sales",
        "stage_id": "proposals_sent",
        "name": "Proposal Follow Up",
        "is_enabled": True,
        "steps": [
            _email(
                2, "hours",
                "Thank you for the opportunity!",
                "Hi {first-name}, thanks for considering {company-name}. Let us know if the proposal raises any questions.",
            ),
            _email(
                1, "days",
                "Have you had a chance to review the proposal?",
                "Just following up on the proposal we sent. Happy to walk through it with you.",
            ),
            _sms(2, "days", "Hi {first-name}, any questions about your proposal from {company-name}?"),
            _email(
                7, "days",
                "re: Ready to move forward?",
                "Our calendar is filling up. If you'd like to lock in a start date, reply and we'll get you scheduled.",
            ),
            _email(
                1, "months",
                "Do we still have a chance?",
                "We haven't heard back and wanted to check whether the project is still on your list.",
            ),
        ],
    },
    {
        "pipeline_id": "sales",
        "stage_id": "proposals_rejected",
        "name": "Proposal Rejected Re-Engagement",
        "is_enabled": True,
        "steps": [
            _email(
                1, "hours",
                "Your Proposal",
                "Hi {first-name}, sorry it wasn't a fit this time. Would you share what made the difference?",
            ),
            _email(
                3, "days",
                "What can we do?",
                "If budget or timing was the concern, we may have options. Let us know.",
            ),
        ],
    },
    {
        "pipeline_id": "jobs",
        "stage_id": "project_accepted",
        "name": "Proposal Accepted",
        "is_enabled": True,
        "steps": [
            _email(
                30, "minutes",
                "Re: Thank you!",
                "Hi {first-name}, thank you for choosing {company-name}! We'll be in touch shortly to schedule your project.",
            ),
        ],
    },
    {
        "pipeline_id": "jobs",
        "stage_id": "project_scheduled",
        "name": "Project Scheduled Details",
        "is_enabled": True,
        "steps": [
            _both(
                0, "minutes",
                "Your project with {company-name} has been scheduled",
                "Hi {first-name}, your project is on the calendar. We'll confirm the crew's arrival the day before.",
                "Hi {first-name}, your project with {company-name} is scheduled. We'll confirm arrival the day before.",
            ),
        ],
    },
    {
        "pipeline_id": "jobs",
        "stage_id": "project_in_progress",
        "name": "Job Starting",
        "is_enabled": True,
        "steps": [
            _sms(0, "minutes", "Hi {first-name}, the {company-name} crew is starting on your project today."),
        ],
    },
    {
        "pipeline_id": "jobs",
        "stage_id": "project_complete",
        "name": "Review Request",
        "is_enabled": True,
        "steps": [
            _email(
                0, "minutes",
                "How'd We Do?",
                "Hi {first-name}, your project is complete. We'd love to hear how it went.",
            ),
            _sms(30, "minutes", "Hi {first-name}, thanks again for choosing {company-name}! Mind leaving us a quick review?"),
            _both(
                2, "days",
                "Share Your Experience with Us",
                "A short review helps other homeowners find us. Thanks for your support!",
                "Hi {first-name}, a short review would mean a lot to the {company-name} team. Thank you!",
            ),
        ],
    },
]
