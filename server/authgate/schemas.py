from typing import Optional

from pydantic import BaseModel

# Request fields are optional at the schema level so that missing values are
# reported by the handlers as 400 with a specific message.


class SignupRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TwoFACodeRequest(BaseModel):
    method: Optional[str] = None
    token: Optional[str] = None


class UserSummary(BaseModel):
    id: str
    first_name: str
    last_name: Optional[str] = None
    email: str


class UserProfile(UserSummary):
    phone: Optional[str] = None
    is_2fa_enabled: bool = False
