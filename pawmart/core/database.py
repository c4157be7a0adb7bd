"""
DynamoDB Connection Manager for PawMart

- boto3 resource for single-item reads and queries
- boto3 client for TransactWriteItems
- botocore Config with standard retry mode, timeouts and pooling

Credentials are NOT set here; boto3's default provider chain is used.

Usage:
    from pawmart.core.database import db_manager

    table = db_manager.get_table(settings.DYNAMODB_ORDERS_TABLE)
    client = db_manager.get_dynamodb_client()
"""

import os
import logging
import asyncio
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pawmart.core.config import settings

logger = logging.getLogger(__name__)


def _create_boto_config(
    max_pool_connections: int = 25,
    connect_timeout: int = 5,
    read_timeout: int = 30,
    max_attempts: int = 3,
    retry_mode: str = 'standard'
) -> BotoConfig:
    """
    Create a boto3 Config with pooling, timeouts and retries.

    Region and credentials are deliberately left out of the config.
    """
    return BotoConfig(
        max_pool_connections=max_pool_connections,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={
            'max_attempts': max_attempts,
            'mode': retry_mode
        }
    )


class DatabaseManager:
    """
    Lazily-initialised holder for the DynamoDB resource and client.

    DynamoDB clients are thread-safe, so one instance is shared by the
    worker threads that `asyncio.to_thread` runs boto3 calls on.
    """

    def __init__(self, region: Optional[str] = None, endpoint_url: Optional[str] = None):
        self._aws_region = region or settings.AWS_REGION
        self._dynamodb_endpoint = endpoint_url or settings.DYNAMODB_ENDPOINT
        self._dynamodb_resource: Optional[Any] = None
        self._dynamodb_client: Optional[Any] = None
        self._boto_config = _create_boto_config(
            max_pool_connections=int(os.getenv('BOTO_MAX_POOL_CONNECTIONS', '25')),
            connect_timeout=int(os.getenv('BOTO_CONNECT_TIMEOUT', '5')),
            read_timeout=int(os.getenv('BOTO_READ_TIMEOUT', '30')),
            max_attempts=int(os.getenv('BOTO_MAX_RETRY_ATTEMPTS', '3')),
            retry_mode=os.getenv('BOTO_RETRY_MODE', 'standard'),
        )

    def _client_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            'region_name': self._aws_region,
            'config': self._boto_config
        }
        if self._dynamodb_endpoint:
            kwargs['endpoint_url'] = self._dynamodb_endpoint
        return kwargs

    def get_dynamodb(self):
        if self._dynamodb_resource is None:
            self._dynamodb_resource = boto3.resource('dynamodb', **self._client_kwargs())
            logger.info(
                f"DynamoDB resource initialized: region={self._aws_region}, "
                f"endpoint={'local' if self._dynamodb_endpoint else 'aws'}"
            )
        return self._dynamodb_resource

    def get_dynamodb_client(self):
        if self._dynamodb_client is None:
            self._dynamodb_client = boto3.client('dynamodb', **self._client_kwargs())
        return self._dynamodb_client

    def get_table(self, table_name: str):
        return self.get_dynamodb().Table(table_name)

    async def health_check(self) -> Dict[str, Any]:
        """Describe the orders table to confirm connectivity and credentials."""
        try:
            await asyncio.to_thread(
                self.get_dynamodb_client().describe_table,
                TableName=settings.DYNAMODB_ORDERS_TABLE
            )
            return {"dynamodb": True}
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB health check failed: {e}")
            return {"dynamodb": False, "error": str(e)}


db_manager = DatabaseManager()
