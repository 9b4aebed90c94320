"""Utility modules for the log monitor."""
from utils.logger import setup_logging
from utils.http_client import HTTPClient, APIError
