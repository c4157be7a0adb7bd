"""
Email Service for PawMart
Sends emails via AWS SES, or logs them in development
"""

import asyncio
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pawmart.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Notification sink: `send_email(to, subject, html, text)`"""

    def __init__(self, use_ses: Optional[bool] = None, ses_client=None):
        self.use_ses = settings.USE_AWS_SES if use_ses is None else use_ses
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.ses_client = ses_client

        if self.use_ses and self.ses_client is None:
            self.ses_client = boto3.client('ses', region_name=settings.AWS_REGION)
        elif not self.use_ses:
            logger.info("Email service in development mode - emails will be logged only")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None
    ) -> bool:
        """
        Send email using AWS SES or log in development

        Returns:
            True if email sent successfully, False otherwise
        """
        try:
            if self.use_ses:
                message = {
                    'Subject': {'Data': subject},
                    'Body': {'Html': {'Data': html_body}}
                }
                if text_body:
                    message['Body']['Text'] = {'Data': text_body}

                response = await asyncio.to_thread(
                    self.ses_client.send_email,
                    Source=f"{self.from_name} <{self.from_email}>",
                    Destination={'ToAddresses': [to_email]},
                    Message=message
                )

                logger.info(f"Email sent successfully to {to_email}. MessageId: {response['MessageId']}")
                return True

            logger.info(
                f"EMAIL (DEVELOPMENT MODE) to={to_email} "
                f"from={self.from_name} <{self.from_email}> subject={subject!r}"
            )
            return True

        except ClientError as e:
            logger.error(f"Failed to send email to {to_email}: {e.response['Error']['Message']}")
            return False
        except BotoCoreError as e:
            logger.error(f"Unexpected error sending email to {to_email}: {e}")
            return False
