import os, boto3
from typing import Mapping, Optional

from botocore.config import Config

from ..errors import InvalidEndpoint

DEFAULT_REGION = "us-west-2"


def get_dynamo_client(
    endpoint_url: Optional[str] = None,
    region: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
    max_attempts: int = 1,
    credentials: Optional[Mapping[str, str]] = None,
):
    """
    Low-level DynamoDB client (thread-safe, unlike boto3 resources).
    - For local: pass endpoint_url or set DYNAMO_LOCAL_URL (e.g. http://dynamodb-local:8000)
    - For AWS:   set AWS_REGION and credentials as usual
    `credentials` is the opaque auth provider: a mapping with aws_access_key_id /
    aws_secret_access_key (and optionally aws_session_token). botocore retries
    default to a single attempt; callers own their retry policy.
    """
    endpoint_url = endpoint_url or os.getenv("DYNAMO_LOCAL_URL")
    region = region or os.getenv("AWS_REGION", DEFAULT_REGION)
    cfg_kwargs = {"retries": {"max_attempts": max_attempts, "mode": "standard"}}
    if timeout is not None:
        cfg_kwargs["connect_timeout"] = timeout
        cfg_kwargs["read_timeout"] = timeout
    cfg = Config(**cfg_kwargs)

    kwargs = {"region_name": region, "config": cfg}
    if credentials:
        kwargs.update({k: v for k, v in credentials.items() if v})
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
        # DynamoDB Local accepts any key pair but botocore insists on one
        kwargs.setdefault("aws_access_key_id", os.getenv("AWS_ACCESS_KEY_ID", "dummy"))
        kwargs.setdefault("aws_secret_access_key", os.getenv("AWS_SECRET_ACCESS_KEY", "dummy"))
    try:
        return boto3.client("dynamodb", **kwargs)
    except ValueError as exc:
        # botocore rejects malformed endpoint URLs and region names up front
        raise InvalidEndpoint(str(exc)) from exc
