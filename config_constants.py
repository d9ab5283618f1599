# config_constants.py
import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# ---------------- Database ----------------
MONGODB_URI = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.environ.get("MONGODB_DB", "leatherworks")

# ---------------- App ----------------
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-leatherworks-secret")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ---------------- Uploads (local disk) ----------------
UPLOADS_ROOT = os.environ.get("UPLOADS_ROOT", os.path.join(BASE_DIR, "uploads"))
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "10"))
ALLOWED_ATTACHMENT_EXTENSIONS = {"pdf", "png", "jpg", "jpeg"}

# ---------------- Domain ----------------
STOCK_STATUSES = ("pending", "approved", "rejected")
APPLICATION_STATUSES = ("pending", "approved", "rejected")
JOB_STATUSES = ("pending", "open", "closed", "finished")
REMOVAL_CATEGORIES = ("leather", "material", "finished_product")
