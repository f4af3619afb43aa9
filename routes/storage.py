from flask import Blueprint, send_from_directory
from utils import get_extension

storage_bp = Blueprint('storage', __name__)


@storage_bp.route('/storage/v1/object/public/<bucket>/<path:object_name>', methods=['GET'])
def public_object(bucket, object_name):
    """ Serves uploaded donation images. """
    return send_from_directory(get_extension('storage').bucket_path(bucket), object_name)
