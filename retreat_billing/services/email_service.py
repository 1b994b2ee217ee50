import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending partner billing emails via SMTP."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "Partner Team",
        business_name: str = "Retreat Partners",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.business_name = business_name

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email over SMTP.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML body of the email
            text_content: Plain text body (optional fallback)

        Returns:
            True if email sent successfully, False otherwise
        """
        if not self.smtp_user or not self.smtp_password:
            logger.warning("Email not configured. SMTP credentials missing.")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            # Connect and send with timeout
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP Authentication failed. Check email credentials.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False
        except TimeoutError:
            logger.error("SMTP connection timed out")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {e}")
            return False

    def send_invoice_notification(self, partner, invoice, invoice_url: str) -> bool:
        """
        Tell a partner their consolidated commission invoice is ready.

        Args:
            partner: Partner with name and email
            invoice: Invoice with id, amount, due_date
            invoice_url: Payer-facing PayPal link

        Returns:
            True if email sent successfully, False otherwise
        """
        subject = f"Invoice #{invoice.id} - Commission Payment Due"
        amount = f"${invoice.amount:,.2f}"
        due = invoice.due_date.strftime("%B %d, %Y")

        html_content = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Commission Invoice</h2>
            <p>Hello {partner.name},</p>
            <p>An invoice has been generated for your completed retreat bookings.</p>
            <div style="background-color: #f5f5f5; padding: 15px; margin: 20px 0; border-radius: 4px;">
                <p><strong>Invoice Number:</strong> #{invoice.id}</p>
                <p><strong>Amount Due:</strong> {amount}</p>
                <p><strong>Due Date:</strong> {due}</p>
            </div>
            <p>You can view and pay your invoice via PayPal:</p>
            <p style="margin: 20px 0;">
                <a href="{invoice_url}"
                   style="background-color: #0070ba; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; display: inline-block;">
                    View Invoice on PayPal
                </a>
            </p>
            <p>Thank you for your partnership!</p>
            <p>Best regards,<br>{self.business_name} Partner Team</p>
        </div>
        """

        text_content = f"""
        Commission Invoice

        Hello {partner.name},

        Invoice #{invoice.id} for {amount} is due on {due}.

        View and pay your invoice: {invoice_url}

        Best regards,
        {self.business_name} Partner Team
        """

        return self.send_email(partner.email, subject, html_content, text_content)


def get_email_service() -> EmailService:
    """Get configured email service instance."""
    from retreat_billing.config import settings

    return EmailService(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        business_name=settings.BUSINESS_NAME,
    )
