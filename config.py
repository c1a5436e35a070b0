"""
config.py - Configuration constants for the PDF alt-text remediation service.
"""
import os
from pathlib import Path

# Directories
UPLOADS_DIR = Path(os.environ.get("REMEDIATOR_UPLOADS_DIR", "uploads"))
OUTPUT_DIR = Path(os.environ.get("REMEDIATOR_OUTPUT_DIR", "output"))

# Maximum upload size per file (100 MB)
MAX_FILE_SIZE_MB = 100
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

# Longest wait for another operation on the same document to finish
DOCUMENT_LOCK_TIMEOUT_SECONDS = 300.0

# Identification stamped on every remediated PDF
PRODUCER = "PDF Alt-Text Remediator (pikepdf)"
CREATOR = "PDF Alt-Text Remediator"
KEYWORDS = ("accessible", "WCAG", "remediated", "alt-text")

# Alt text substituted when the vision service cannot describe an image
ALT_TEXT_UNAVAILABLE = "Image description unavailable"

# Vision backend ("ollama" or "gemini"; empty = auto-detect)
VISION_PROVIDER = os.environ.get("VISION_PROVIDER", "").strip().lower()

OLLAMA_HOST = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "llava")

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

# Vision request limits
VISION_TIMEOUT_SECONDS = float(os.environ.get("VISION_TIMEOUT_SECONDS", "60"))
VISION_MAX_RETRIES = 3
VISION_RATE_LIMIT_BACKOFF_SECONDS = 20.0
VISION_TEMPERATURE = 0.3
VISION_MAX_TOKENS = 150

# Text sampled from the first pages for language detection
LANGUAGE_DETECTION_PAGES = 5
LANGUAGE_DETECTION_CHARS = 5000
