"""Navigator Secure Fields Meta information.
   Navigator Secure Fields keeps sensitive settings encrypted at rest and
   reveals them, briefly, to authorized operators.
"""
__title__ = 'navigator_secure_fields'
__description__ = (
   'Navigator Secure Fields keeps sensitive settings encrypted at rest '
   'and reveals them temporarily to authorized operators.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-secure-fields'
