# photos.py
import logging
import os

from werkzeug.utils import secure_filename

from errors import ValidationError
from models import DEFAULT_DOCTOR_PHOTO

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
PHOTO_URL_PREFIX = "uploads/doctors"


def allowed_photo(filename):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def save_doctor_photo(file, user_id, upload_folder):
    """Store an uploaded photo as ``<user_id>_<name>``; returns the static-relative path."""
    filename = secure_filename(file.filename or "")
    if not filename or not allowed_photo(filename):
        raise ValidationError("Photos must be png, jpg, jpeg, gif or webp images.")
    os.makedirs(upload_folder, exist_ok=True)
    stored = f"{user_id}_{filename}"
    file.save(os.path.join(upload_folder, stored))
    logger.info("Saved doctor photo %s", stored)
    return f"{PHOTO_URL_PREFIX}/{stored}"


def delete_doctor_photo(photo, upload_folder):
    if not photo or photo == DEFAULT_DOCTOR_PHOTO or not photo.startswith(PHOTO_URL_PREFIX + "/"):
        return False
    path = os.path.join(upload_folder, os.path.basename(photo))
    if not os.path.exists(path):
        return False
    os.remove(path)
    logger.info("Deleted doctor photo %s", photo)
    return True
