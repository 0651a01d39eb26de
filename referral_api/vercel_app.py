"""
Vercel-specific Flask application entry point.
"""

import os
from .observability.config import setup_observability
from .app import create_app

# Vercel expects the WSGI application to be named 'app'
app = create_app()
setup_observability(app.config)

if __name__ == "__main__":
    app.run(debug=False, host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
