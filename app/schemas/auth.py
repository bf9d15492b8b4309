from pydantic import BaseModel, EmailStr, field_validator


class LoginRequest(BaseModel):
    email:    EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def not_empty(cls, v):
        if not v: raise ValueError("Password is required")
        return v
