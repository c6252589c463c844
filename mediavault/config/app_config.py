"""
Application configuration read from the environment.
"""

import os
import tempfile

from dotenv import load_dotenv

load_dotenv()

# Media root: a local directory ("/data") or a remote "host/bucket" pair
MEDIA_LOCATION = os.environ.get('MEDIA_LOCATION', '/data').rstrip('/') or '/'

# Recompute and compare content hashes after copy-based moves
HASH_VERIFICATION_ENABLED = os.environ.get('HASH_VERIFICATION_ENABLED', 'true').lower() == 'true'

FILE_STORAGE_STAGING_DIR = os.environ.get('FILE_STORAGE_STAGING_DIR', tempfile.gettempdir())

SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI', 'sqlite:///mediavault.db')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

S3_MULTIPART_THRESHOLD_MB = int(os.environ.get('S3_MULTIPART_THRESHOLD_MB', '8'))

# Object store credentials, one pair per supported provider
TIGRIS_ACCESS_KEY_ID = os.environ.get('TIGRIS_ACCESS_KEY_ID')
TIGRIS_SECRET_ACCESS_KEY = os.environ.get('TIGRIS_SECRET_ACCESS_KEY')
WASABI_ACCESS_KEY_ID = os.environ.get('WASABI_ACCESS_KEY_ID')
WASABI_SECRET_ACCESS_KEY = os.environ.get('WASABI_SECRET_ACCESS_KEY')
AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
