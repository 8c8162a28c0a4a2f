"""
Shared slowapi limiter.

Lives outside app.main so feature routers can decorate endpoints without
importing the application module.
"""
from slowapi import Limiter

from app.features.users.dependencies import get_authorization_header


limiter = Limiter(key_func=get_authorization_header)
