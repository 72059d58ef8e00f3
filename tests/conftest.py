import os

os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("FINANCE_SCHEDULER_ENABLED", "0")
os.environ.setdefault("FINANCE_TIMEZONE", "Asia/Kolkata")
os.environ["FINANCE_GEMINI_API_KEY"] = ""
