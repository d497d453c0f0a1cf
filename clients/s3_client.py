"""
S3 client for narration audio.
Uploads retry with exponential backoff; lookups never raise.
"""

import os
import logging
import asyncio

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

S3_BUCKET = os.getenv("S3_BUCKET", "papertutor-media")
S3_REGION = os.getenv("AWS_REGION", "eu-west-1")
S3_PREFIX = os.getenv("S3_PREFIX", "audio/lessons")

UPLOAD_MAX_ATTEMPTS = 3

_client = None


def _get_s3_client():
    """boto3 client, created lazily; credentials come from the default AWS chain"""
    global _client
    if _client is None:
        _client = boto3.client("s3", region_name=S3_REGION)
    return _client


def get_s3_url(key: str) -> str:
    """Public URL of an object in the media bucket"""
    return f"https://{S3_BUCKET}.s3.{S3_REGION}.amazonaws.com/{key}"


def build_audio_key(course_id: str, module_index: int, lesson_index: int) -> str:
    """Deterministic cache key: audio/lessons/{course_id}/{module}-{lesson}.mp3"""
    return f"{S3_PREFIX}/{course_id}/{module_index}-{lesson_index}.mp3"


def build_course_audio_prefix(course_id: str) -> str:
    return f"{S3_PREFIX}/{course_id}/"


def upload_bytes_to_s3(key: str, data: bytes, content_type: str = "application/octet-stream") -> bool:
    """Blocking put_object; False on any failure so the caller can retry"""
    try:
        _get_s3_client().put_object(Bucket=S3_BUCKET, Key=key, Body=data, ContentType=content_type)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "unknown")
        logger.error(f"Upload of {key} rejected by S3 ({code}): {e}")
        return False
    except Exception as e:
        logger.error(f"Upload of {key} failed: {e}")
        return False
    logger.info(f"Uploaded {key} to {S3_BUCKET} ({len(data)} bytes)")
    return True


async def upload_with_retry(
    key: str,
    data: bytes,
    content_type: str = "application/octet-stream",
    max_attempts: int = UPLOAD_MAX_ATTEMPTS,
) -> bool:
    """Upload in a worker thread, waiting 2^n seconds after the n-th failed attempt."""
    for attempt in range(1, max_attempts + 1):
        if await asyncio.to_thread(upload_bytes_to_s3, key, data, content_type):
            return True
        if attempt < max_attempts:
            backoff = 2 ** attempt
            logger.warning(f"S3 upload attempt {attempt}/{max_attempts} failed for {key}. Retrying in {backoff}s...")
            await asyncio.sleep(backoff)
    logger.error(f"S3 upload failed after {max_attempts} attempts: {key}")
    return False


def object_exists(key: str) -> bool:
    try:
        _get_s3_client().head_object(Bucket=S3_BUCKET, Key=key)
        return True
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") not in ("404", "NoSuchKey", "NotFound"):
            logger.warning(f"S3 head_object failed for {key}: {e}")
        return False
    except Exception as e:
        logger.warning(f"S3 head_object unexpected error for {key}: {e}")
        return False


async def object_exists_async(key: str) -> bool:
    return await asyncio.to_thread(object_exists, key)


def delete_prefix(prefix: str) -> int:
    """Delete every object under prefix. Returns the number of deleted objects."""
    deleted = 0
    try:
        client = _get_s3_client()
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=S3_BUCKET, Prefix=prefix):
            objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if objects:
                client.delete_objects(Bucket=S3_BUCKET, Delete={"Objects": objects})
                deleted += len(objects)
        logger.info(f"S3 deleted {deleted} objects under {prefix}")
    except Exception as e:
        logger.error(f"S3 delete failed for prefix {prefix}: {e}")
    return deleted


async def delete_prefix_async(prefix: str) -> int:
    return await asyncio.to_thread(delete_prefix, prefix)
