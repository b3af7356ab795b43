# Copy to petshop/local_settings.py for machine-specific overrides.

DEBUG = True

ALLOWED_HOSTS = ['*']

# For production use PostgreSQL so select_for_update takes real row locks:
# DATABASES = {
#     'default': {
#         'ENGINE': 'django.db.backends.postgresql',
#         'NAME': 'petshop',
#         'USER': '',
#         'PASSWORD': '',
#         'HOST': 'localhost',
#         'PORT': '5432',
#     },
# }

# Midtrans sandbox
PAYMENT_GATEWAY = {
    'SERVER_KEY': '',
    'SNAP_URL': 'https://app.sandbox.midtrans.com/snap/v1/transactions',
    'ORDER_PREFIX': 'HOLYCAT',
    'TIMEOUT_SECONDS': 10,
}

EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'
