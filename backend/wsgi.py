# backend/wsgi.py
from bizdesk import create_app

app = create_app()
