import logging
import re
from datetime import date, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Create a folder
def mkdir(path):
    folder_path = Path(path)
    folder_path.mkdir(parents=True, exist_ok=True)
    logger.debug("Folder '%s' ready", folder_path)
    return folder_path

# "H:MM" / "HH:MM[:SS]" -> "HH:MM"; zero-padded so string comparison orders correctly
def normalize_time(value: str) -> str:
    value = (value or "").strip()
    parts = value.split(":")
    if len(parts) in (2, 3) and all(p.isdigit() for p in parts):
        value = f"{int(parts[0]):02d}:{parts[1]}"
    if not TIME_RE.match(value):
        raise ValueError("time must be in HH:MM format")
    return value

# Dates and datetimes to ISO strings for JSON
def to_jsonable(row: dict) -> dict:
    for k, v in list(row.items()):
        if isinstance(v, datetime):
            row[k] = v.isoformat()
        elif isinstance(v, date):
            row[k] = v.isoformat()
    return row

# ORM object -> dict of its columns
def model_to_dict(obj, exclude=()) -> dict:
    data = {c.name: getattr(obj, c.name) for c in obj.__table__.columns if c.name not in exclude}
    return to_jsonable(data)
