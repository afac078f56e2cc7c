from slowapi import Limiter
from slowapi.util import get_remote_address

# Global limiter instance reused across the app
limiter = Limiter(key_func=get_remote_address)

# Each generation call creates a real Google Calendar event
MEETING_GENERATE_LIMIT = "10/minute"
OAUTH_START_LIMIT = "20/minute"
