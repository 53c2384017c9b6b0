"""WSGI entrypoint used by Gunicorn.

Run with: `gunicorn -b 0.0.0.0:5000 wsgi:app`
"""

from app import app as app

# Common WSGI convention for other servers/tools.
application = app
