"""
SOLTIP Image Uploads

Avatar and banner images are not stored by SOLTIP itself. They are checked,
stripped of metadata and forwarded to an external upload service
(``UPLOAD_ENDPOINT_URL``), whose public URL is saved on the profile.
"""

import io
import logging
import os
import re

import requests
from django.conf import settings
from django.core.exceptions import ValidationError
from PIL import Image, UnidentifiedImageError

from .validators import validate_file_size

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    'image/jpeg': 'JPEG',
    'image/jpg': 'JPEG',
    'image/png': 'PNG',
    'image/gif': 'GIF',
    'image/webp': 'WEBP',
}


class UploadError(Exception):
    """An upload was rejected or could not be forwarded; ``status`` is the HTTP status to report."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


def sanitize_filename(name):
    return re.sub(r'[^a-zA-Z0-9_.-]', '_', os.path.basename(name or 'upload')) or 'upload'


def strip_metadata(file, image_format):
    """
    Re-encode an image without EXIF or other embedded metadata.

    Only the pixel data is copied into a fresh image, so location data and
    camera details never leave the server.

    Args:
        file: File-like object holding the uploaded image
        image_format: Pillow format name to encode as

    Returns:
        bytes: The cleaned image

    Raises:
        UploadError: If the file cannot be decoded as an image
    """
    try:
        img = Image.open(file)
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UploadError("File is not a valid image.") from e

    if image_format == 'JPEG' and img.mode not in ('RGB', 'L'):
        img = img.convert('RGB')
    elif img.mode not in ('RGB', 'RGBA', 'L', 'LA'):
        img = img.convert('RGBA')

    clean = Image.new(img.mode, img.size)
    clean.paste(img)

    output = io.BytesIO()
    clean.save(output, format=image_format)
    return output.getvalue()


def upload_image(file):
    """
    Validate an uploaded image and forward it to the upload service.

    Args:
        file: Django UploadedFile from ``request.FILES``

    Returns:
        str: Public URL of the stored image

    Raises:
        UploadError: On invalid input (400), missing configuration (503)
            or upstream failure (502)
    """
    image_format = ALLOWED_CONTENT_TYPES.get(file.content_type)
    if image_format is None:
        raise UploadError("Invalid file type. Only JPG, PNG, GIF and WEBP are allowed.")

    try:
        validate_file_size(file)
    except ValidationError as e:
        raise UploadError(e.messages[0]) from e

    if not settings.UPLOAD_ENDPOINT_URL:
        raise UploadError("Image uploads are not configured.", status=503)

    content = strip_metadata(file, image_format)
    filename = sanitize_filename(file.name)

    headers = {}
    if settings.UPLOAD_API_KEY:
        headers['Authorization'] = f"Bearer {settings.UPLOAD_API_KEY}"

    try:
        response = requests.post(
            settings.UPLOAD_ENDPOINT_URL,
            files={'file': (filename, content, file.content_type)},
            headers=headers,
            timeout=30,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("Image upload to %s failed: %s", settings.UPLOAD_ENDPOINT_URL, e)
        raise UploadError("Failed to upload image", status=502) from e

    if not isinstance(data, dict):
        data = {}
    url = data.get('url') or (data.get('data') or {}).get('url')
    if not url:
        logger.error("Upload service response had no URL: %s", data)
        raise UploadError("Failed to upload image", status=502)

    logger.info("Uploaded %s (%d bytes)", filename, len(content))
    return url
