"""S3 client manager for handling the S3 connection lifecycle."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

from aiobotocore.client import AioBaseClient
from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from authvault.core.exceptions import StoreConnectionError, StoreError
from authvault.core.settings import AuthVaultSettings

logger = logging.getLogger(__name__)


def adjust_endpoint_url(
    endpoint_url: str | None, bucket_name: str | None
) -> str | None:
    """Adjust endpoint URL for path-style addressing if needed.

    Args:
        endpoint_url: The S3 endpoint URL
        bucket_name: The S3 bucket name

    Returns:
        Adjusted endpoint URL or None
    """
    if not endpoint_url:
        return None
    if bucket_name and f"{bucket_name}." in endpoint_url:
        return endpoint_url.replace(f"{bucket_name}.", "")
    return endpoint_url


@dataclass
class PoolConfig:
    """Connection settings for the shared S3 client.

    Attributes:
        max_connections: Maximum number of HTTP connections the client keeps
        connect_timeout: Seconds to wait when opening a connection
        read_timeout: Seconds to wait for a response
    """

    max_connections: int = 10
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


class S3ClientManager:
    """Owns one aiobotocore S3 client for the lifetime of the process.

    The manager is created explicitly by the application (or the CLI) and
    started and closed with it; aiobotocore clients are safe to share across
    concurrent tasks.
    """

    def __init__(
        self,
        settings: AuthVaultSettings,
        pool_config: PoolConfig | None = None,
    ):
        """Initialize the client manager.

        Args:
            settings: AuthVault settings
            pool_config: Connection settings
        """
        self.settings = settings
        self.pool_config = pool_config or PoolConfig()
        self._endpoint_url = adjust_endpoint_url(
            settings.aws_url, settings.aws_bucket_name
        )
        self._client_config = Config(
            s3={"addressing_style": "path"},
            retries={
                "max_attempts": settings.aws_retry_attempts,
                "mode": "standard",
            },
            max_pool_connections=self.pool_config.max_connections,
            connect_timeout=self.pool_config.connect_timeout,
            read_timeout=self.pool_config.read_timeout,
        )
        self._exit_stack: AsyncExitStack | None = None
        self._client: AioBaseClient | None = None

    @property
    def client(self) -> AioBaseClient:
        if self._client is None:
            raise StoreConnectionError(
                "S3 client manager has not been started",
                endpoint=self._endpoint_url,
            )
        return self._client

    async def start(self) -> AioBaseClient:
        """Open the shared client.

        Returns:
            The aiobotocore S3 client

        Raises:
            StoreConnectionError: If client creation fails
        """
        if self._client is not None:
            return self._client

        stack = AsyncExitStack()
        try:
            self._client = await stack.enter_async_context(
                get_session().create_client(
                    "s3",
                    region_name=self.settings.aws_default_region,
                    aws_access_key_id=self.settings.aws_access_key_id,
                    aws_secret_access_key=self.settings.aws_secret_access_key,
                    endpoint_url=self._endpoint_url,
                    config=self._client_config,
                )
            )
        except (BotoCoreError, ClientError) as e:
            await stack.aclose()
            raise StoreConnectionError(
                message=f"Failed to create async S3 client: {e}",
                original_error=e,
                endpoint=self._endpoint_url,
            ) from e

        self._exit_stack = stack
        logger.info(f"S3 client opened for bucket {self.settings.aws_bucket_name}")
        return self._client

    async def close(self) -> None:
        """Close the shared client."""
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AioBaseClient, None]:
        """Open the client for the duration of a ``async with`` block.

        Yields:
            The aiobotocore S3 client
        """
        client = await self.start()
        try:
            yield client
        finally:
            await self.close()

    async def ensure_bucket_exists(self) -> None:
        """Ensure the configured S3 bucket exists, creating it if necessary.

        Raises:
            StoreConnectionError: If bucket creation fails
            StoreError: If the bucket check fails
        """
        bucket = self.settings.aws_bucket_name
        try:
            await self.client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            # Handle both numeric codes and named codes
            if error_code in ("404", "NoSuchBucket", "NotFound"):
                try:
                    await self.client.create_bucket(Bucket=bucket)
                    logger.info(f"Created bucket {bucket}")
                except ClientError as create_error:
                    raise StoreConnectionError(
                        message=f"Failed to create bucket: {create_error}",
                        original_error=create_error,
                        endpoint=self._endpoint_url,
                    ) from create_error
            elif error_code == "403":
                raise StoreError(
                    "Permission denied checking bucket existence",
                    operation="head_bucket",
                ) from e
            else:
                raise StoreError(f"Error checking bucket: {e}", operation="head_bucket") from e
