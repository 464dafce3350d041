import os
from decimal import Decimal

class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///bakequote.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pricing and payment defaults, overridable per baker where the model allows
    DEFAULT_CURRENCY = os.getenv('DEFAULT_CURRENCY', 'USD')
    DEFAULT_TAX_RATE = Decimal(os.getenv('DEFAULT_TAX_RATE', '0.08'))
    PAYMENT_TOLERANCE = Decimal(os.getenv('PAYMENT_TOLERANCE', '0.01'))
    PLATFORM_FEE_RATE = Decimal(os.getenv('PLATFORM_FEE_RATE', '0'))
    QUOTE_NUMBER_RETRIES = int(os.getenv('QUOTE_NUMBER_RETRIES', '5'))

    # External collaborators
    NOTIFY_WEBHOOK_URL = os.getenv('NOTIFY_WEBHOOK_URL', '')
    NOTIFY_WEBHOOK_SECRET = os.getenv('NOTIFY_WEBHOOK_SECRET', '')
    NOTIFY_TIMEOUT = int(os.getenv('NOTIFY_TIMEOUT', '10'))
    PAYMENT_WEBHOOK_SECRET = os.getenv('PAYMENT_WEBHOOK_SECRET', '')

class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'

class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'
