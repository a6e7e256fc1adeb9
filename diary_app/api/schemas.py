"""
接口请求模型
"""

from pydantic import BaseModel


class SignUpRequest(BaseModel):
    email: str
    password: str
    confirm_password: str


class SignInRequest(BaseModel):
    email: str
    password: str


class PasswordUpdateRequest(BaseModel):
    new_password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class RecoveryRequest(BaseModel):
    """重置密码链接中携带的令牌"""
    access_token: str
    refresh_token: str = ""


class PasswordResetRequest(BaseModel):
    new_password: str
    confirm_password: str


class DeleteAccountRequest(BaseModel):
    password: str
