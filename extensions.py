from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize Limiter (Configured in app.py via init_app)
# Write endpoints carry their own limits; /api/quote is hit on every form edit
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "300 per hour"],
    storage_uri="memory://"
)
