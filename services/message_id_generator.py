from datetime import datetime, timezone
import random


def generate_message_id(now: datetime = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"MSG{now.strftime('%Y%m%d%H%M%S%f')}{random.randint(1000,9999)}"


def generate_file_id(now: datetime = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"FILE{now.strftime('%Y%m%d%H%M%S%f')}{random.randint(1000,9999)}"
