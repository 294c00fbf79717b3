"""
Runtime settings for the scheduling and compensation backend.
Values come from the environment (.env is loaded by python-dotenv).
"""
import os
from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Open-ended timetables are materialised this many calendar months past today
SESSION_GENERATION_HORIZON_MONTHS = int(os.getenv("SESSION_GENERATION_HORIZON_MONTHS", "3"))

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:3001",
).split(",")

# Roles allowed to run verification and payroll operations
ADMIN_ROLES = ("Admin", "Super Admin")
