import logging
import logging.config
from pathlib import Path
from exam_platform.core.config import settings


def build_logging_config(log_dir: str, level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed",
                "stream": "ext://sys.stdout"
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": level,
                "formatter": "detailed",
                "filename": str(Path(log_dir) / "app.log"),
                "maxBytes": 10485760,
                "backupCount": 5
            },
            "error_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "ERROR",
                "formatter": "detailed",
                "filename": str(Path(log_dir) / "error.log"),
                "maxBytes": 10485760,
                "backupCount": 5
            }
        },
        "root": {
            "level": level,
            "handlers": ["console", "file", "error_file"]
        },
        "loggers": {
            "exam_platform": {
                "level": level,
                "handlers": ["console", "file", "error_file"],
                "propagate": False
            },
            "apscheduler": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            },
            "uvicorn.access": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        }
    }


def configure_logging():
    Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings.LOG_DIR, settings.LOG_LEVEL.upper()))
