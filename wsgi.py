"""
WSGI entry point for the enrollment automation service.

    gunicorn wsgi:app                  # APP_ENV=production
    flask --app wsgi db migrate -m "..."
    flask --app wsgi db upgrade

Run a single worker per process group, or set SCHEDULER_ENABLED=false on all
but one, so retention jobs fire once per slot.
"""

import os

from app import create_app

app = create_app(os.getenv("APP_ENV"))

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
