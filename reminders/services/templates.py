"""Message bodies for batched reminders (one SMS or one email per recipient)."""

from __future__ import annotations

from html import escape
from typing import Sequence

from reminders.types.dispatch_contract import DeadlineBand, DeadlineFragment, MedicationFragment

SMS_FOOTER = "Reply HELP for help."
EMAIL_INTRO = "We detected claim filing deadlines approaching:"


# ──────────────────────────────────────────────────────────────────────────
# SMS
# ──────────────────────────────────────────────────────────────────────────


def medication_line(fragment: MedicationFragment) -> str:
    return f"🐾 Time to give {fragment.pet_name} their {fragment.medication_name}!"


def build_medication_sms(fragments: Sequence[MedicationFragment]) -> str:
    lines = [medication_line(f) for f in fragments]
    lines.append(SMS_FOOTER)
    return "\n".join(lines)


# ──────────────────────────────────────────────────────────────────────────
# Email
# ──────────────────────────────────────────────────────────────────────────


def deadline_tag(fragment: DeadlineFragment) -> str:
    if fragment.band is DeadlineBand.PASSED:
        return "DEADLINE PASSED"
    return f"{fragment.days_remaining} days"


def build_deadline_subject(fragments: Sequence[DeadlineFragment]) -> str:
    if len(fragments) == 1:
        f = fragments[0]
        if f.band is DeadlineBand.PASSED:
            return f"⏰ The filing deadline for {f.pet_name}'s claim has passed"
        return f"⏰ Your {f.pet_name} claim expires in {f.days_remaining} days"
    return f"⏰ {len(fragments)} pet insurance claim deadlines need attention"


def build_deadline_text(fragments: Sequence[DeadlineFragment], dashboard_url: str) -> str:
    lines = "\n".join(
        f"- {f.pet_name} | {f.clinic_name or '—'} | service: {f.service_date.isoformat()} "
        f"| deadline: {f.deadline.isoformat()} | {deadline_tag(f)}"
        for f in fragments
    )
    return f"{EMAIL_INTRO}\n\n{lines}\n\nDashboard: {dashboard_url}"


def build_deadline_html(fragments: Sequence[DeadlineFragment], dashboard_url: str) -> str:
    rows = "\n".join(
        "        <tr>"
        f"<td>{escape(f.pet_name)}</td>"
        f"<td>{escape(f.clinic_name or '—')}</td>"
        f"<td>{f.service_date.isoformat()}</td>"
        f"<td><strong>{f.deadline.isoformat()}</strong></td>"
        f"<td>{escape(deadline_tag(f))}</td>"
        "</tr>"
        for f in fragments
    )
    url = escape(dashboard_url, quote=True)
    return f"""<!doctype html>
<html>
  <head>
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <meta http-equiv="Content-Type" content="text/html; charset=UTF-8" />
    <title>Claim Deadline Reminder</title>
    <style>
      body {{ background: #f8fafc; color: #0f172a; margin: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif; }}
      .container {{ max-width: 560px; margin: 0 auto; padding: 24px; }}
      .card {{ background: #ffffff; border: 1px solid #e2e8f0; border-radius: 12px; padding: 20px; }}
      table {{ width: 100%; border-collapse: collapse; font-size: 14px; }}
      th, td {{ text-align: left; padding: 6px 4px; border-bottom: 1px solid #e2e8f0; }}
      .cta {{ display: inline-block; margin-top: 16px; background: #059669; color: #fff; text-decoration: none; padding: 10px 14px; border-radius: 8px; font-weight: 600; }}
      .footer {{ margin-top: 16px; color: #64748b; font-size: 12px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="card">
        <p>{escape(EMAIL_INTRO)}</p>
        <table>
        <tr><th>Pet</th><th>Clinic</th><th>Service</th><th>File by</th><th>Status</th></tr>
{rows}
        </table>
        <a class="cta" href="{url}" target="_blank" rel="noopener noreferrer">Open dashboard</a>
        <div class="footer">This is a reminder from Pet Claim Helper. Update notification settings in your profile.</div>
      </div>
    </div>
  </body>
</html>"""
