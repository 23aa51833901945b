import logging
import platform
import sys

from smart_break.config.logging_config import setup_logging
from smart_break.config.settings import settings
from smart_break.services.runner import ServiceRunner

logger = logging.getLogger(__name__)


def check_environment():
    """Check if the environment meets requirements"""
    if sys.version_info < (3, 10):
        print("Python 3.10 or higher is required")
        sys.exit(1)

    if platform.system() not in ['Darwin', 'Linux', 'Windows']:
        print(f"Unsupported operating system: {platform.system()}")
        sys.exit(1)


async def main():
    check_environment()
    setup_logging()
    settings.validate_paths()
    runner = ServiceRunner()
    await runner.run()
