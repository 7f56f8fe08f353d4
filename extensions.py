from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Bound in app.py, same pattern as models.db
# Limits, storage and strategy come from the RATELIMIT_* config keys
limiter = Limiter(key_func=get_remote_address)
