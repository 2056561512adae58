# Import the application
from app import app, db
import logging

logger = logging.getLogger(__name__)

# Import the API routes to ensure they're registered
import api  # noqa: F401

# Verify the database on startup
with app.app_context():
    try:
        from sqlalchemy import text
        db.session.execute(text("SELECT 1")).scalar()
        logger.info("Database connection verified")
    except Exception as e:
        logger.warning(f"Database warmup failed: {e}")

# Expose app for gunicorn
application = app

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=False)
