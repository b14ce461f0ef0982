import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class S3Config:
    endpoint_url: Optional[str]
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str
    public_base_url: Optional[str]


def get_s3_config() -> Optional[S3Config]:
    access = (os.environ.get("S3_ACCESS_KEY_ID") or "").strip()
    secret = (os.environ.get("S3_SECRET_ACCESS_KEY") or "").strip()
    bucket = (os.environ.get("S3_BUCKET") or "").strip()
    if not access or not secret or not bucket:
        return None
    return S3Config(
        endpoint_url=(os.environ.get("S3_ENDPOINT_URL") or "").strip() or None,
        access_key_id=access,
        secret_access_key=secret,
        bucket=bucket,
        region=(os.environ.get("S3_REGION") or "us-east-1").strip() or "us-east-1",
        public_base_url=(os.environ.get("S3_PUBLIC_BASE_URL") or "").strip().rstrip("/") or None,
    )


def s3_enabled() -> bool:
    return get_s3_config() is not None


def _client(cfg: S3Config):
    # boto3 is only imported when uploads are configured.
    import boto3
    from botocore.config import Config

    return boto3.client(
        "s3",
        endpoint_url=cfg.endpoint_url,
        aws_access_key_id=cfg.access_key_id,
        aws_secret_access_key=cfg.secret_access_key,
        region_name=cfg.region,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def public_url(cfg: S3Config, key: str) -> str:
    if cfg.public_base_url:
        return f"{cfg.public_base_url}/{key}"
    if cfg.endpoint_url:
        return f"{cfg.endpoint_url.rstrip('/')}/{cfg.bucket}/{key}"
    return f"https://{cfg.bucket}.s3.{cfg.region}.amazonaws.com/{key}"


def put_public_bytes(*, key: str, data: bytes, content_type: str) -> str:
    """Upload a publicly readable asset (tenant logos) and return its URL."""
    cfg = get_s3_config()
    if not cfg:
        raise RuntimeError("S3 not configured")
    _client(cfg).put_object(
        Bucket=cfg.bucket,
        Key=key,
        Body=data or b"",
        ContentType=content_type or "application/octet-stream",
        CacheControl="public, max-age=86400",
    )
    return public_url(cfg, key)
