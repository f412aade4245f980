"""Local development entry point.

Usage:
    python run.py

Point Shopify at http://<tunnel>/webhooks/shopify while this is running.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from storehook import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    with app.app_context():
        from storehook.extensions import db
        db.create_all()  # dev convenience; production runs `flask db upgrade`
    app.run(debug=True, host="0.0.0.0", port=5001)
