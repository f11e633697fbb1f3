import os, uuid, io, boto3
from botocore.client import Config
from .config import get_settings

_s3 = None


def _client():
    global _s3
    settings = get_settings()
    if not (settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY and settings.S3_BUCKET):
        return None, settings
    if _s3 is None:
        _s3 = boto3.client('s3', region_name=settings.AWS_DEFAULT_REGION or "ap-northeast-2",
                           aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                           aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                           config=Config(signature_version='s3v4'))
    return _s3, settings


def safe_filename(filename: str) -> str:
    name = os.path.basename(filename or "").strip().replace(" ", "_")
    return name or "upload.bin"


def store_bytes(file_type: str, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
    """Store an attachment and return its URL. Only the URL is kept on the order."""
    s3, settings = _client()
    filename = f"{uuid.uuid4().hex}_{safe_filename(filename)}"
    if s3:
        key = f"{file_type}/{filename}"
        s3.upload_fileobj(io.BytesIO(data), settings.S3_BUCKET, key, ExtraArgs={"ContentType": content_type})
        return f"https://{settings.S3_BUCKET}.s3.amazonaws.com/{key}"
    else:
        subdir = os.path.join(settings.FILES_DIR, file_type)
        os.makedirs(subdir, exist_ok=True)
        path = os.path.join(subdir, filename)
        with open(path, "wb") as f:
            f.write(data)
        return f"/files/{file_type}/{filename}"
