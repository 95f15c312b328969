"""
Email service for sending OTPs.
Uses fastapi-mail; when no mailer is configured or delivery fails the code is
written to the log instead ("demo mode") so local setups keep working.
"""
from typing import Optional, TYPE_CHECKING

from fastapi_mail import MessageSchema, MessageType

from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail


class EmailService:
    """Service for sending emails via fastapi-mail."""

    @staticmethod
    def build_otp_message(to_email: str, otp: str) -> MessageSchema:
        """Compose the OTP email."""
        ttl = config.OTP_TTL_SECONDS
        validity = f"{ttl // 60} minute{'s' if ttl // 60 != 1 else ''}" if ttl >= 60 else f"{ttl} seconds"
        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #2563eb;">FixIt Hostel</h2>
                <p>Your verification code is:</p>
                <div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0; border-radius: 5px;">
                    <h1 style="color: #2563eb; font-size: 32px; margin: 0; letter-spacing: 5px;">{otp}</h1>
                </div>
                <p>This code will expire in {validity}.</p>
                <p style="color: #666; font-size: 12px;">If you didn't request this code, please ignore this email.</p>
            </div>
        </body>
        </html>
        """
        return MessageSchema(
            subject="Your FixIt Hostel verification code",
            recipients=[to_email],
            body=html_body,
            subtype=MessageType.html,
        )

    @staticmethod
    async def send_otp_email(to_email: str, otp: str, fm: "FastMail") -> bool:
        """
        Send OTP email using fastapi-mail.

        Args:
            to_email: Recipient email address
            otp: OTP code to send
            fm: FastMail instance (from request.app.state.mail)

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await fm.send_message(EmailService.build_otp_message(to_email, otp))
            logger.info(f"OTP email sent successfully to {to_email}")
            return True
        except Exception as e:
            logger.error(f"Failed to send OTP email to {to_email}: {e}", exc_info=True)
            return False

    @staticmethod
    async def dispatch_otp(to_email: str, otp: str, fm: Optional["FastMail"]) -> bool:
        """
        Deliver an OTP, falling back to logging it.

        Runs as a background task after the send-otp response has been
        returned, so it never raises.
        """
        if fm is not None and await EmailService.send_otp_email(to_email, otp, fm):
            return True
        logger.warning(f"DEMO MODE: OTP for {to_email} is {otp} (email not delivered)")
        return False
