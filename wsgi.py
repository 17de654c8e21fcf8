import os

from mediaguard import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))

if __name__ == "__main__":
    # 0.0.0.0 so the container port mapping works
    app.run(host="0.0.0.0", port=5000, debug=True)
