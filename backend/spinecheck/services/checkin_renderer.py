"""
Check-in message rendering: outbound email/SMS prompts and the reply landing page.

Everything here is pure: inputs plus a RenderContext (base URL, feature flags, token signer).
Database lookups (template, diagnosis insert, tier) happen in the callers.
"""
from __future__ import annotations

import html
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from spinecheck.config import settings
from spinecheck.models.check_in_event import CHANNEL_EMAIL, CHANNEL_SMS
from spinecheck.schemas.checkins import Branch, Tier
from spinecheck.services import reply_token
from spinecheck.services.attribution import source_tag

NOTE_ENDPOINT = "/api/v1/checkins/note"
NOTE_LIMIT = 280

DEFAULT_DISCLAIMER = (
    "Educational use only. Not a diagnosis or treatment. "
    "If symptoms worsen or new symptoms develop, seek medical care."
)
SAFETY_FOLLOW_UP = (
    "If you're still concerned, use the note box below to tell us more. "
    "Remember, if symptoms escalate or feel urgent, please seek in-person medical care."
)
DEFAULT_EMAIL_SUBJECT = "Quick check-in (Day {{day}})"
DEFAULT_EMAIL_SHELL = (
    "Hi there,\n"
    "It has been {{day}} days since your guide arrived. We would love to know how your back is doing.\n"
    "{{insert}}\n"
    "Tap the option below that best matches how you feel today."
)
DEFAULT_SMS_SHELL = "Day {{day}} check-in: how is your back today? {{insert}}"

BRANCH_LABELS: dict[Branch, str] = {
    Branch.BETTER: "Feeling Better",
    Branch.SAME: "About the Same",
    Branch.WORSE: "Feeling Worse",
}


@dataclass(frozen=True)
class RenderContext:
    app_url: str
    expanded_care_enabled: bool
    sign_token: Callable[[Mapping[str, Any]], str]
    note_endpoint: str = NOTE_ENDPOINT

    @property
    def base_url(self) -> str:
        return self.app_url.rstrip("/")


def context_from_settings(sign_token: Callable[[Mapping[str, Any]], str] | None = None) -> RenderContext:
    return RenderContext(
        app_url=settings.normalized_app_url,
        expanded_care_enabled=settings.feature_expanded_care,
        sign_token=sign_token or reply_token.sign,
    )


@dataclass(frozen=True)
class TemplateContent:
    """Template fields the renderer needs, detached from the ORM row."""

    shell_text: str
    subject: str | None = None
    disclaimer_text: str | None = None


@dataclass(frozen=True)
class OutboundMessage:
    channel: str
    subject: str | None
    text: str
    html: str | None = None


@dataclass(frozen=True)
class Cta:
    label: str
    url: str
    style: str  # "primary" | "secondary"


@dataclass(frozen=True)
class BranchView:
    title: str
    message: str
    ctas: tuple[Cta, ...]
    follow_up: str | None = None


def default_template(channel: str) -> TemplateContent:
    if channel == CHANNEL_SMS:
        return TemplateContent(shell_text=DEFAULT_SMS_SHELL)
    return TemplateContent(shell_text=DEFAULT_EMAIL_SHELL, subject=DEFAULT_EMAIL_SUBJECT)


def fill_shell(shell_text: str, day: int, insert_text: str | None) -> list[str]:
    """Substitute placeholders; lines left empty by a missing insert are dropped."""
    filled = shell_text.replace("{{day}}", str(day)).replace("{{insert}}", (insert_text or "").strip())
    return [line.strip() for line in filled.splitlines() if line.strip()]


def reply_url(ctx: RenderContext, assessment_id: str, day: int, branch: Branch) -> str:
    token = ctx.sign_token({"assessment_id": assessment_id, "day": day, "value": branch.value})
    return f"{ctx.base_url}/c/i?token={quote(token, safe='')}&source={quote(source_tag(day), safe='')}"


# --- Outbound prompt ---------------------------------------------------------


def render_checkin_message(
    channel: str,
    day: int,
    assessment_id: str,
    template: TemplateContent | None,
    insert_text: str | None,
    ctx: RenderContext,
) -> OutboundMessage:
    """Compose the day-N prompt with one-tap better/same/worse links."""
    template = template or default_template(channel)
    lines = fill_shell(template.shell_text, day, insert_text)
    links = [(branch, reply_url(ctx, assessment_id, day, branch)) for branch in Branch]
    disclaimer = template.disclaimer_text or DEFAULT_DISCLAIMER

    if channel == CHANNEL_SMS:
        choices = " ".join(f"{BRANCH_LABELS[b]}: {url}" for b, url in links)
        text = " ".join(lines + [choices, "Reply STOP to opt out."])
        return OutboundMessage(channel=CHANNEL_SMS, subject=None, text=text)

    subject = (template.subject or DEFAULT_EMAIL_SUBJECT).replace("{{day}}", str(day))
    paragraphs = "\n".join(f"<p>{html.escape(line)}</p>" for line in lines)
    buttons = " ".join(
        f'<a href="{url}" class="btn {b.value}" style="text-decoration: none;">{BRANCH_LABELS[b]}</a>'
        for b, url in links
    )
    body_html = (
        f"<h2>Day {day} Check-In</h2>\n"
        f"{paragraphs}\n"
        '<div style="text-align: center; margin: 30px 0;">\n'
        '<h3 style="margin-bottom: 20px;">How are you feeling today?</h3>\n'
        f"{buttons}\n"
        "</div>\n"
        f'<div class="disclaimer">{html.escape(disclaimer)}</div>'
    )
    text_lines = lines + [f"{BRANCH_LABELS[b]}: {url}" for b, url in links] + [disclaimer]
    return OutboundMessage(channel=CHANNEL_EMAIL, subject=subject, text="\n\n".join(text_lines), html=body_html)


# --- Reply landing page ------------------------------------------------------


class _Links:
    def __init__(self, ctx: RenderContext, assessment_id: str, day: int):
        aid = quote(assessment_id, safe="")
        src = quote(source_tag(day), safe="")
        base = ctx.base_url
        self.guide = f"{base}/guide/{aid}?source={src}"
        self.enhanced = f"{base}/guide/{aid}/upgrade?tier=enhanced&source={src}"
        self.monograph = f"{base}/guide/{aid}/upgrade?tier=monograph&source={src}"
        self.schedule = f"{base}/comprehensive-care?assessment={aid}&source={src}"


def _better_view(links: _Links, day: int, tier: Tier, expanded_care: bool) -> BranchView:
    title = "Great to hear!"
    if tier == Tier.FREE:
        return BranchView(
            title,
            f"Great to hear you're feeling better on day {day}. Keep the momentum going with a deeper plan.",
            (
                Cta("Upgrade to the Enhanced Guide ($5)", links.enhanced, "primary"),
                Cta("Get the Complete Monograph ($20)", links.monograph, "secondary"),
            ),
        )
    if tier == Tier.ENHANCED:
        return BranchView(
            title,
            f"Great to hear you're feeling better on day {day}. Consider our comprehensive monograph for even deeper insights.",
            (
                Cta("Get the Complete Monograph ($20)", links.monograph, "primary"),
                Cta("View Your Enhanced Guide", links.guide, "secondary"),
            ),
        )
    ctas = [Cta("View Your Comprehensive Guide", links.guide, "primary")]
    if expanded_care:
        ctas.append(Cta("Schedule Comprehensive Support", links.schedule, "secondary"))
    return BranchView(
        title,
        f"Great to hear you're feeling better on day {day}. You're on the right track with your comprehensive guide.",
        tuple(ctas),
    )


def _same_view(links: _Links, day: int, tier: Tier, expanded_care: bool) -> BranchView:
    title = "Thanks for checking in"
    if tier == Tier.FREE:
        return BranchView(
            title,
            f"Plateaus are normal around day {day}. Our enhanced upgrade adds step-by-step strategies to help you break through.",
            (
                Cta("Unlock the Enhanced Guide", links.enhanced, "primary"),
                Cta("View Your Current Guide", links.guide, "secondary"),
            ),
        )
    if tier == Tier.ENHANCED:
        return BranchView(
            title,
            f"Plateaus are normal around day {day}. The comprehensive monograph offers additional strategies and professional illustrations.",
            (
                Cta("Upgrade to the Monograph ($20)", links.monograph, "primary"),
                Cta("Review Your Enhanced Guide", links.guide, "secondary"),
            ),
        )
    ctas = [Cta("Review Your Comprehensive Guide", links.guide, "primary")]
    if expanded_care:
        ctas.append(Cta("Consider Professional Support", links.schedule, "secondary"))
    return BranchView(
        title,
        f"Plateaus are normal around day {day}. Review your comprehensive guide for advanced strategies.",
        tuple(ctas),
    )


def _worse_view(links: _Links, day: int, tier: Tier, expanded_care: bool) -> BranchView:
    title = "We hear you"
    schedule = Cta("Schedule Comprehensive Support", links.schedule, "secondary")
    if tier == Tier.MONOGRAPH:
        if expanded_care:
            ctas: tuple[Cta, ...] = (
                Cta("Schedule Comprehensive Support", links.schedule, "primary"),
                Cta("Review Your Comprehensive Guide", links.guide, "secondary"),
            )
        else:
            ctas = (Cta("Review Your Comprehensive Guide", links.guide, "primary"),)
        return BranchView(
            title,
            f"If things feel tougher by day {day}, review your comprehensive guide carefully. "
            "Consider professional support if symptoms persist.",
            ctas,
            SAFETY_FOLLOW_UP,
        )
    if tier == Tier.ENHANCED:
        message = (
            f"If things feel tougher by day {day}, the comprehensive monograph includes "
            "professional illustrations and deeper guidance."
        )
        primary = Cta("Upgrade to the Full Monograph", links.monograph, "primary")
    else:
        message = (
            f"If things feel tougher by day {day}, the comprehensive monograph goes deeper and includes "
            "professional illustrations to guide next steps."
        )
        primary = Cta("Get the Comprehensive Monograph", links.monograph, "primary")
    if expanded_care:
        return BranchView(title, message, (primary, schedule))
    return BranchView(title, message, (primary,), SAFETY_FOLLOW_UP)


_BRANCH_VIEWS: dict[Branch, Callable[[_Links, int, Tier, bool], BranchView]] = {
    Branch.BETTER: _better_view,
    Branch.SAME: _same_view,
    Branch.WORSE: _worse_view,
}
_unhandled = set(Branch) - set(_BRANCH_VIEWS)
if _unhandled:
    raise RuntimeError(f"No landing view for branches: {sorted(b.value for b in _unhandled)}")


def branch_view(
    branch: Branch | str,
    day: int,
    assessment_id: str,
    ctx: RenderContext,
    tier: Tier = Tier.FREE,
) -> BranchView:
    branch = Branch(branch)
    return _BRANCH_VIEWS[branch](_Links(ctx, assessment_id, day), day, tier, ctx.expanded_care_enabled)


def _cta_html(cta: Cta) -> str:
    return f'<a href="{cta.url}" class="btn {cta.style}">{html.escape(cta.label)}</a>'


def render_landing_page(
    branch: Branch | str,
    day: int,
    assessment_id: str,
    ctx: RenderContext,
    *,
    tier: Tier = Tier.FREE,
    insert_text: str | None = None,
) -> str:
    """Full HTML page shown after a one-tap reply, with the signed note form embedded."""
    branch = Branch(branch)
    view = branch_view(branch, day, assessment_id, ctx, tier)
    note_token = ctx.sign_token({"assessment_id": assessment_id, "day": day, "value": branch.value})
    buttons = "\n      ".join(_cta_html(c) for c in view.ctas)
    insert_html = f'<p class="insert">{html.escape(insert_text.strip())}</p>' if insert_text and insert_text.strip() else ""
    follow_up_html = f'<p class="follow-up">{view.follow_up}</p>' if view.follow_up else ""
    return _LANDING_PAGE.format(
        title=html.escape(view.title),
        message=html.escape(view.message, quote=False),
        insert=insert_html,
        buttons=buttons,
        follow_up=follow_up_html,
        token=html.escape(note_token),
        note_limit=NOTE_LIMIT,
        note_endpoint=ctx.note_endpoint,
        disclaimer=DEFAULT_DISCLAIMER,
        logo_url=f"{ctx.base_url}/branding/painoptix-logo.png",
    )


def render_error_page(message: str) -> str:
    return _ERROR_PAGE.format(message=html.escape(message))


_LANDING_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>PainOptix - Check-In Recorded</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6;
      color: #445B78; display: flex; justify-content: center; padding: 48px 16px 64px;
      background: linear-gradient(180deg, #f6f9ff 0%, #eef2f9 100%); }}
    .container {{ background: #ffffff; border-radius: 16px; box-shadow: 0 24px 48px rgba(11, 83, 148, 0.12);
      padding: 48px; max-width: 640px; width: 100%; }}
    .logo {{ text-align: center; margin-bottom: 32px; }}
    .logo img {{ max-height: 120px; }}
    h1 {{ font-size: 32px; color: #0B5394; text-align: center; margin: 0 0 16px; }}
    .message, .insert, .follow-up {{ text-align: center; margin: 0 auto 24px; max-width: 520px; }}
    .buttons {{ display: flex; justify-content: center; gap: 12px; flex-wrap: wrap; margin: 32px 0 24px; }}
    .btn {{ padding: 14px 28px; border-radius: 999px; font-weight: 600; text-decoration: none; border: 1px solid #0B5394; }}
    .btn.primary {{ background-color: #0B5394; color: #ffffff; }}
    .btn.secondary {{ background-color: transparent; color: #0B5394; }}
    .note-section {{ background: rgba(11, 83, 148, 0.04); border-radius: 12px; padding: 24px; margin: 32px 0; }}
    .note-form textarea {{ width: 100%; min-height: 100px; padding: 12px; border-radius: 10px; font-family: inherit; }}
    .note-response.success {{ color: #2c7a4b; }}
    .note-response.error {{ color: #b02a37; }}
    .disclaimer {{ margin-top: 40px; font-size: 13px; color: #5E6B7E; text-align: center; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="logo"><img src="{logo_url}" alt="PainOptix" /></div>
    <h1>{title}</h1>
    <p class="message">{message}</p>
    {insert}
    <div class="buttons">
      {buttons}
    </div>
    {follow_up}
    <div class="note-section">
      <h3>Additional Notes (Optional)</h3>
      <p>If you'd like to share any additional information about your condition, please let us know below.</p>
      <form class="note-form">
        <input type="hidden" name="token" value="{token}">
        <textarea name="note" maxlength="{note_limit}" placeholder="Share any changes, concerns, or observations..."></textarea>
        <button type="submit" class="note-submit">Submit Note</button>
        <div id="note-response" class="note-response"></div>
      </form>
    </div>
    <div class="disclaimer">{disclaimer}</div>
  </div>
  <script>
    (function() {{
      const form = document.querySelector('.note-form');
      if (!form) return;
      const textarea = form.querySelector('textarea');
      const submitButton = form.querySelector('button[type="submit"]');
      const responseEl = document.getElementById('note-response');
      form.addEventListener('submit', async (event) => {{
        event.preventDefault();
        const note = textarea.value.trim();
        if (!note) {{
          responseEl.textContent = 'Please enter a note before submitting ({note_limit} characters max).';
          responseEl.className = 'note-response error';
          return;
        }}
        const token = form.querySelector('input[name="token"]').value;
        submitButton.disabled = true;
        try {{
          const res = await fetch('{note_endpoint}', {{
            method: 'POST',
            headers: {{ 'Content-Type': 'application/json' }},
            body: JSON.stringify({{ token, note }})
          }});
          const data = await res.json();
          if (!res.ok || !data || data.success !== true) {{
            throw new Error('unable_to_submit');
          }}
          textarea.value = '';
          responseEl.textContent = data.message || 'Note received. Thank you!';
          responseEl.className = 'note-response success';
        }} catch (error) {{
          responseEl.textContent = 'We could not save your note right now. Please try again soon.';
          responseEl.className = 'note-response error';
        }} finally {{
          submitButton.disabled = false;
        }}
      }});
    }})();
  </script>
</body>
</html>"""

_ERROR_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>PainOptix - Error</title>
</head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 40px 20px; text-align: center;">
  <h1 style="color: #dc3545;">Oops!</h1>
  <p>{message}</p>
  <p>The link you clicked may have expired or is invalid.</p>
  <a href="/">Return to Homepage</a>
</body>
</html>"""
