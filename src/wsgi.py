from app import create_app
from services.config import load_settings
from services.logging_service import setup_logging

settings = load_settings()
setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
app = create_app(settings)
