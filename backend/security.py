from fastapi import Header

from config import ADMIN_API_KEY
from errors import Unauthorized

def verify_admin(x_api_key: str = Header(default="")):
    if not x_api_key or x_api_key != ADMIN_API_KEY:
        raise Unauthorized("Unauthorized")
