import base64
import binascii
import os
import re
import uuid
from collections import namedtuple

from werkzeug.utils import secure_filename

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB
ALLOWED_IMAGE_TYPES = ('image/jpeg', 'image/png', 'image/gif')
DONATION_IMAGES_BUCKET = 'donation-images'

_EXTENSIONS = {'image/jpeg': 'jpg', 'image/png': 'png', 'image/gif': 'gif'}
_DATA_URL = re.compile(r'^data:(?P<type>[\w/+.-]+);base64,(?P<data>.+)$', re.DOTALL)

ImageUpload = namedtuple('ImageUpload', ['filename', 'content', 'content_type'])


class StorageError(Exception):
    pass


def image_from_file(file_storage):
    """Wraps an uploaded werkzeug ``FileStorage``."""
    return ImageUpload(
        filename=file_storage.filename or 'upload',
        content=file_storage.read(),
        content_type=file_storage.mimetype,
    )


def image_from_data_url(data_url, filename='upload'):
    match = _DATA_URL.match(data_url or '')
    if not match:
        raise StorageError('Invalid image data')
    try:
        content = base64.b64decode(match.group('data'), validate=True)
    except (binascii.Error, ValueError):
        raise StorageError('Invalid image data')
    return ImageUpload(filename=filename, content=content, content_type=match.group('type'))


class ObjectStorage:
    """
    Bucket-scoped file storage on local disk.

    Objects are written to ``<root>/<bucket>/<path>`` and served back through
    the public URL route registered in ``routes/storage.py``.
    """

    def __init__(self, root, public_base_url='/storage/v1/object/public'):
        self.root = root
        self.public_base_url = public_base_url.rstrip('/')

    def bucket_path(self, bucket):
        return os.path.join(self.root, secure_filename(bucket))

    def upload(self, bucket, image, prefix=''):
        """Stores an ``ImageUpload`` and returns its object path inside the bucket."""
        if image.content_type not in ALLOWED_IMAGE_TYPES:
            raise StorageError(f'Unsupported image type: {image.content_type}')
        if len(image.content) > MAX_IMAGE_SIZE:
            raise StorageError('Image is larger than 5MB')
        if not image.content:
            raise StorageError('Image is empty')

        name = secure_filename(image.filename).rsplit('.', 1)[0] or 'image'
        object_name = f"{uuid.uuid4().hex}-{name}.{_EXTENSIONS[image.content_type]}"
        if prefix:
            object_name = f"{secure_filename(prefix)}/{object_name}"

        target = os.path.join(self.bucket_path(bucket), object_name)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, 'wb') as fh:
            fh.write(image.content)
        return object_name

    def get_public_url(self, bucket, object_name):
        return f"{self.public_base_url}/{secure_filename(bucket)}/{object_name}"

    def remove(self, bucket, object_name):
        target = os.path.join(self.bucket_path(bucket), object_name)
        if os.path.exists(target):
            os.remove(target)
