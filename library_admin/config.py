import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///library.db')
    SECRET_KEY = os.environ.get('SECRET_KEY', 'your_secret_key')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.environ.get('JWT_EXPIRE_HOURS', 24)))
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_ROUNDS', 12))

    # No default: the per-day fine must be set by the library.
    FINE_PER_DAY = os.environ.get('FINE_PER_DAY')

    DEFAULT_LOAN_DAYS = int(os.environ.get('DEFAULT_LOAN_DAYS', 14))
    MIN_LOAN_DAYS = int(os.environ.get('MIN_LOAN_DAYS', 1))
    MAX_LOAN_DAYS = int(os.environ.get('MAX_LOAN_DAYS', 90))
    LENDING_MAX_ATTEMPTS = int(os.environ.get('LENDING_MAX_ATTEMPTS', 3))

    # origin of the admin UI allowed to call the API from the browser
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3000')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
