# run.py
import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

from helpdesk_app import create_app

app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    # No reloader: it would start a second process with its own in-memory dialogues.
    app.run(host="0.0.0.0", port=port, debug=True, use_reloader=False)
