# wsgi.py
"""
WSGI entrypoint for the helpdesk bot.

Gunicorn should point to: wsgi:app
"""

from dotenv import load_dotenv

load_dotenv()

from helpdesk_app import create_app

# WSGI application object used by gunicorn
app = create_app()
