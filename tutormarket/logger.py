import logging
import sys
import json
from datetime import datetime
from pathlib import Path
from tutormarket.config import get_settings

LOGS_DIR = Path(get_settings().logs_dir)

# Create logs directory if it doesn't exist
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Configure logging
def setup_logger(name: str = "tutormarket", level: str = None):
    level = logging.getLevelName((level or get_settings().log_level).upper())
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid stacking handlers when the module is re-imported (tests, reloads)
    if logger.handlers:
        return logger

    # Create formatters
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_formatter = logging.Formatter(
        '%(levelname)s: %(message)s'
    )

    # Create handlers
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(level)

    # Create file handler
    file_handler = logging.FileHandler(
        LOGS_DIR / f"server_{datetime.now().strftime('%Y%m%d')}.log"
    )
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(level)

    # Add handlers to logger
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger

class SecurityAuditLogger:
    """Writes one JSON line per security relevant event (role changes, bans, moderation)."""

    def __init__(self):
        self.logger = logging.getLogger('security_audit')
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        if not self.logger.handlers:
            handler = logging.FileHandler(LOGS_DIR / 'security_audit.log')
            handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s'))
            self.logger.addHandler(handler)

    def log_security_event(self, event_type: str, user_id: str, details: dict):
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event_type": event_type,
            "user_id": user_id,
            "details": details
        }
        self.logger.info(json.dumps(log_entry, default=str))

# Use single logger instance across all files
logger = setup_logger()
audit_logger = SecurityAuditLogger()
