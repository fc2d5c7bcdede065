from sensordash import create_app
import os

# Composition root: owns the app and its metric store (gunicorn: app:app)
app = create_app()

if __name__ == "__main__":
    debug_mode = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "5001"))

    app.logger.info(f"Starting SensorDash on {host}:{port}, debug={debug_mode}")
    app.run(debug=debug_mode, host=host, port=port)
