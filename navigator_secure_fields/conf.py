"""Secure Fields settings shared by the server boundary and the client."""
import os

# request key where the host application attaches the caller's FieldSession
SESSION_OBJECT = os.environ.get('SECURE_FIELDS_SESSION_OBJECT', 'secure_fields.session')
SESSION_KEY = 'user_id'
SESSION_ID = 'session_id'

# anti-forgery token transport
CSRF_HEADER = os.environ.get('SECURE_FIELDS_CSRF_HEADER', 'X-Secure-Fields-Token')
CSRF_FIELD = '_token'

ROUTE_PREFIX = os.environ.get('SECURE_FIELDS_ROUTE_PREFIX', '/secure-fields')

# highest administrative capability of the host
ADMIN_CAPABILITY = os.environ.get('SECURE_FIELDS_ADMIN_CAPABILITY', 'manage_options')
