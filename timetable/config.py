import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()
# Settings
DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///./timetable.db')
FRONT_URL = os.environ.get('FRONT_URL', 'http://localhost:5173')
SQL_ECHO = os.environ.get('SQL_ECHO', '').lower() in ('1', 'true', 'yes')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Bearer tokens
SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')
TOKEN_MAX_AGE = int(os.environ.get('TOKEN_MAX_AGE', 24 * 60 * 60))

# Account created on first start
ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@university.ru')
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'password')

EXPORT_DIR = os.environ.get('EXPORT_DIR', './exports')

# Development server (python -m timetable.main)
HOST = os.environ.get('HOST', '127.0.0.1')
PORT = int(os.environ.get('PORT', 8000))
