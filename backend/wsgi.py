# backend/wsgi.py
from adega import create_app

app = create_app()

if __name__ == "__main__":
    # threaded so SSE streams do not block other requests
    app.run(threaded=True)
