import os
from typing import List

from dotenv import load_dotenv

load_dotenv()  # picks up a .env next to where the service is started

# ---------- External API ----------
CRITERIA_API_BASE = os.getenv("CRITERIA_API_BASE", "http://localhost:3000/api").rstrip("/")
AUDIT_API_BASE = os.getenv("AUDIT_API_BASE", CRITERIA_API_BASE).rstrip("/")

# "http" talks to CRITERIA_API_BASE, "memory" keeps everything in-process (dev only)
CRITERIA_STORE = os.getenv("CRITERIA_STORE", "http").lower().strip()

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ---------- Editor sessions ----------
# Idle sessions expire after SESSION_TTL seconds; the oldest go first past MAX_SESSIONS
SESSION_TTL = float(os.getenv("SESSION_TTL", "3600"))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "500"))

# ---------- Year groups ----------
MIN_YEAR_GROUP = int(os.getenv("MIN_YEAR_GROUP", "2025"))
YEAR_GROUP_OPTIONS: List[int] = [MIN_YEAR_GROUP + i for i in range(8)]

# ---------- Grading ----------
DEFAULT_PASS_GRADE = "D"
GRADES: List[str] = ["A+", "A", "B+", "B", "C+", "C", "D+", "D", "E", "P"]

REQUIRED_PRIORITY = 0
ELECTIVE_PRIORITY = 50
DEFAULT_ELECTIVE_TAG = "Elective"

# Must match the "Program" column of the transcript workbook
PROGRAM_OPTIONS: List[str] = [
    "B.Sc - Computer Engineering",
    "B.Sc - Mechanical Engineering",
    "B.Sc - Mechatronics Engineering",
    "B.Sc - Electrical and Electronic Engineering",
    "B.Sc - Law with Public Policy",
    "B.Sc - Business Administration",
    "B.Sc - Computer Science",
    "B.Sc - Management Information Systems",
    "B.Sc - Economics",
]
