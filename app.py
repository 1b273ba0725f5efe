"""WSGI entry point: `gunicorn app:app` or `python app.py`."""
from flight_proxy.app import create_app
from flight_proxy.config import configure_logging, load_settings

settings = load_settings()
configure_logging(settings.log_level)

app = create_app(settings)

if __name__ == '__main__':
    app.run(host="0.0.0.0", port=settings.port, threaded=True)
