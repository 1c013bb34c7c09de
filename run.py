"""Local development entry point.

Usage:
    python run.py

Loads .env, then serves the ledger on port 3000 with the Flask reloader.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from points_ledger import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=3000)
