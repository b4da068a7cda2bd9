from flask import current_app
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail


def _link_url(link) -> str:
    base = current_app.config.get("BASE_URL", "").rstrip("/")
    return f"{base}/{link.slug}"


def _send(to_email: str, subject: str, html_content: str) -> bool:
    """Send one transactional email. Notifications never fail the caller."""
    api_key = current_app.config.get("SENDGRID_API_KEY")
    sender = current_app.config.get("MAIL_DEFAULT_SENDER")
    if not api_key or not sender:
        current_app.logger.info("SendGrid not configured; skipping email %r to %s", subject, to_email)
        return False

    message = Mail(
        from_email=sender,
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
    )

    try:
        resp = SendGridAPIClient(api_key=api_key).send(message)
    except Exception as e:
        # SendGrid exceptions carry the API's error details on .body
        current_app.logger.exception(
            "SendGrid error: status=%s body=%s error=%s",
            getattr(e, "status_code", None), getattr(e, "body", None), e,
        )
        return False

    # SendGrid typically returns 202 on success
    if resp.status_code not in (200, 202):
        current_app.logger.error("SendGrid failed. Status=%s Body=%s", resp.status_code, resp.body)
        return False

    current_app.logger.info("Email %r sent to %s", subject, to_email)
    return True


def send_purchase_link_email(to_email: str, link) -> bool:
    name = link.name or link.slug
    return _send(
        to_email,
        f"Your Purchase Link - {name}",
        f"""
        <p>Thanks for your purchase!</p>
        <p>You can access <strong>{name}</strong> at any time here:</p>
        <p><a href="{_link_url(link)}">{_link_url(link)}</a></p>
        <p>Use the email address you paid with to unlock it again on another device.</p>
        """,
    )


def send_purchase_notification_email(seller, link, amount) -> bool:
    if not (seller.email and seller.email_notification_link_purchases):
        return False
    name = link.name or link.slug
    return _send(
        seller.email,
        f"Your Link Was Purchased - {name}",
        f"""
        <p>Good news! <strong>{name}</strong> was just purchased for ${amount:,.2f}.</p>
        <p>Your earnings are available in your wallet.</p>
        """,
    )


def send_link_view_email(seller, link) -> bool:
    if not (seller.email and seller.email_notification_link_views):
        return False
    name = link.name or link.slug
    return _send(
        seller.email,
        f"Your Link Was Viewed - {name}",
        f"""
        <p>Someone just viewed <a href="{_link_url(link)}">{name}</a>.</p>
        """,
    )


def send_cash_out_email(seller, amount, method: str) -> bool:
    if not (seller.email and seller.email_notification_cash_out):
        return False
    duration = "Instantly" if method == "instant" else "1-3 business days"
    return _send(
        seller.email,
        f"Cash Out Successful - ${amount:,.2f}",
        f"""
        <p>Hello {seller.first_name or "there"},</p>
        <p>Your cash out of <strong>${amount:,.2f}</strong> is on its way.</p>
        <p>Expected arrival: {duration}.</p>
        """,
    )


def send_wallet_requirements_email(seller, requirements: list[str]) -> bool:
    if not (seller.email and seller.email_notification_cash_out):
        return False
    items = "".join(f"<li>{r}</li>" for r in requirements)
    return _send(
        seller.email,
        "Action Required: Complete Your Wallet Setup",
        f"""
        <p>Hello {seller.first_name or "there"},</p>
        <p>We need a little more information before you can cash out:</p>
        <ul>{items}</ul>
        <p>Open your wallet to finish setting it up.</p>
        """,
    )
