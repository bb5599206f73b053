import os

from app.main import app

if __name__ == "__main__":
    # Webhook and health service; the platform supplies PORT in production.
    app.run(host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", 8080)))
