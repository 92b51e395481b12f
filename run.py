import os

from dotenv import load_dotenv

# Loads environment variables (e.g. GOOGLE_API_KEY, DATA_PATH) from the .env file
load_dotenv()

from fmea_app.main import app

if __name__ == "__main__":
    port = int(os.environ.get('PORT', 5001))
    app.run(host="0.0.0.0", port=port, debug=app.config['DEBUG'])
