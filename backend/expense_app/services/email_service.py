import logging
import smtplib
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from expense_app.core.config import settings
from expense_app.schemas import BudgetAlert

logger = logging.getLogger(__name__)

def _get_smtp_connection():
    user = settings.SMTP_USER
    password = settings.SMTP_PASS

    if not user or not password:
        logger.warning("[EMAIL] SMTP credentials not set. Email will not be sent.")
        return None

    try:
        if settings.SMTP_PORT == 465:
            server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=20)
        else:
            server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=20)
            server.starttls()
        server.login(user, password)
        return server
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"[EMAIL] SMTP Connection Error: {e}")
        return None

def _send_html(to_email, subject, html_content):
    """Sends one message. Returns True on success; failures are logged, never raised."""
    server = _get_smtp_connection()
    if not server:
        return False

    msg = MIMEMultipart()
    msg['From'] = settings.SMTP_FROM or settings.SMTP_USER
    msg['To'] = to_email
    msg['Subject'] = subject
    msg.attach(MIMEText(html_content, 'html'))

    try:
        server.send_message(msg)
        logger.info(f"[EMAIL] '{subject}' sent to {to_email}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"[EMAIL] Failed to send '{subject}' to {to_email}: {e}")
        return False
    finally:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            pass

def budget_alert_subject(alert: BudgetAlert):
    if alert.is_over_budget:
        return f"🚨 Budget Alert: {alert.budget_name} is Over Budget!"
    return f"⚠️ Budget Alert: {alert.budget_name} at {alert.percentage:.1f}%"

def render_budget_alert(alert: BudgetAlert):
    over = alert.is_over_budget
    percentage = float(alert.percentage)

    # Colors
    c_primary = "#1976D2"
    c_alert_bg = "#ffebee" if over else "#fff3e0"
    c_alert_border = "#f44336" if over else "#ff9800"
    if over:
        c_progress = "#f44336"
    elif percentage > 80:
        c_progress = "#ff9800"
    else:
        c_progress = "#4caf50"

    if over:
        headline = "🚨 Budget Exceeded!"
        closing = (
            f"<p><strong>You've exceeded your budget by ${alert.spent - alert.budget_amount:.2f}!</strong> "
            f"Consider reviewing your {alert.category} expenses.</p>"
        )
    else:
        headline = "⚠️ Budget Warning!"
        closing = f"<p>You have ${alert.budget_amount - alert.spent:.2f} remaining in your {alert.category} budget.</p>"

    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <title>Budget Alert</title>
        <style>
            body {{ font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background-color: {c_primary}; color: white; padding: 30px 20px; border-radius: 10px 10px 0 0; text-align: center; }}
            .content {{ background: #ffffff; padding: 30px 20px; border: 1px solid #e0e0e0; border-top: none; }}
            .alert-box {{ background: {c_alert_bg}; border: 2px solid {c_alert_border}; border-radius: 8px; padding: 20px; margin: 20px 0; }}
            .stat-value {{ font-size: 24px; font-weight: bold; color: {c_primary}; }}
            .stat-label {{ font-size: 14px; color: #666; }}
            .progress-bar {{ background: #e0e0e0; border-radius: 10px; height: 20px; margin: 15px 0; overflow: hidden; }}
            .progress-fill {{ height: 100%; background: {c_progress}; width: {min(percentage, 100):.1f}%; border-radius: 10px; }}
            .footer {{ background: #f5f5f5; padding: 20px; text-align: center; border-radius: 0 0 10px 10px; font-size: 14px; color: #666; }}
        </style>
    </head>
    <body>
        <div class="header">
            <h1>💰 ExpenseTracker Pro</h1>
            <p>Budget Alert Notification</p>
        </div>
        <div class="content">
            <h2>Hello {alert.user_name}!</h2>
            <div class="alert-box">
                <h3>{headline}</h3>
                <p>Your <strong>{alert.budget_name}</strong> budget has reached <strong>{percentage:.1f}%</strong> of your limit.</p>
            </div>
            <!-- Stats (tables for email client compatibility) -->
            <table width="100%" cellpadding="0" cellspacing="10" style="background: #f5f5f5; border-radius: 8px;">
                <tr>
                    <td width="33%" style="text-align: center;">
                        <div class="stat-value">${alert.spent:.2f}</div>
                        <div class="stat-label">Spent</div>
                    </td>
                    <td width="33%" style="text-align: center;">
                        <div class="stat-value">${alert.budget_amount:.2f}</div>
                        <div class="stat-label">Budget</div>
                    </td>
                    <td width="33%" style="text-align: center;">
                        <div class="stat-value">{percentage:.1f}%</div>
                        <div class="stat-label">Used</div>
                    </td>
                </tr>
            </table>
            <div class="progress-bar"><div class="progress-fill"></div></div>
            {closing}
            <h3>💡 Quick Tips:</h3>
            <ul>
                <li>Review your recent {alert.category} expenses</li>
                <li>Consider adjusting your budget if needed</li>
                <li>Look for opportunities to save in this category</li>
            </ul>
        </div>
        <div class="footer">
            <p>This is an automated message from ExpenseTracker Pro © {date.today().year}</p>
            <p>You can manage your notification preferences in your account settings</p>
        </div>
    </body>
    </html>
    """

def send_budget_alert(alert: BudgetAlert):
    return _send_html(alert.user_email, budget_alert_subject(alert), render_budget_alert(alert))

def send_welcome_email(user_email: str, user_name: str):
    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <style>
            body {{ font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #1976D2; color: white; padding: 20px; text-align: center; border-radius: 10px 10px 0 0; }}
            .content {{ background: white; padding: 30px; border: 1px solid #ddd; }}
            .footer {{ background: #f5f5f5; padding: 15px; text-align: center; border-radius: 0 0 10px 10px; }}
        </style>
    </head>
    <body>
        <div class="header"><h1>Welcome to ExpenseTracker Pro!</h1></div>
        <div class="content">
            <h2>Hello {user_name}!</h2>
            <p>You can now:</p>
            <ul>
                <li>📄 Upload and scan receipts with AI-powered OCR</li>
                <li>📊 Track expenses automatically</li>
                <li>🎯 Set and monitor budget goals</li>
                <li>🤖 Chat with your AI financial assistant</li>
                <li>📈 View detailed spending analytics</li>
            </ul>
            <p>Get started by uploading your first receipt or setting up your budget goals!</p>
        </div>
        <div class="footer"><p>Happy tracking! - The ExpenseTracker Pro Team</p></div>
    </body>
    </html>
    """
    return _send_html(user_email, "Welcome to ExpenseTracker Pro!", html_content)
