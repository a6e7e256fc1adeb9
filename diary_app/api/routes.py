"""
日记应用接口
认证、日记、资料和账号注销的 JSON 接口
统一返回 {"code": 0, "msg": 提示消息, "data": 数据}，失败时 code 为 1
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request
from diary_app.api.dependencies import (
    get_account_coordinator,
    get_entry_store,
    get_profile_service,
    get_session_store,
)
from diary_app.api.schemas import (
    DeleteAccountRequest,
    ForgotPasswordRequest,
    PasswordResetRequest,
    PasswordUpdateRequest,
    RecoveryRequest,
    SignInRequest,
    SignUpRequest,
)
from diary_app.models.diary import (
    CATEGORY_DESCRIPTIONS,
    Category,
    CategoryInfo,
    DiaryEntryCreate,
    DiaryEntryUpdate,
)
from diary_app.models.profile import ProfileUpdate
from diary_app.services.account_service import AccountLifecycleCoordinator
from diary_app.services.entry_store import EntryStore
from diary_app.services.profile_service import ProfileService
from diary_app.services.session_store import SessionStore
from diary_app.utils.errors import ValidationError
from diary_app.utils.logger import logger

router = APIRouter(prefix="/api")


def ok(msg: str = "success", data: Any = None) -> Dict[str, Any]:
    return {"code": 0, "msg": msg, "data": data}


def require_confirmation(confirm: bool, action: str) -> None:
    """破坏性操作必须显式确认"""
    if not confirm:
        raise ValidationError(f"Please confirm that you want to {action}.")


# 认证

@router.get("/auth/session")
async def get_session(sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    identity = sessions.identity
    return ok(data={
        "identity": identity.model_dump(mode="json") if identity else None,
        "loading": sessions.loading,
        "recovery_pending": sessions.recovery_pending
    })


@router.post("/auth/signup")
async def sign_up(body: SignUpRequest,
                  sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    result = await sessions.sign_up(body.email, body.password, body.confirm_password)
    identity = result.identity
    return ok(result.message, {"identity": identity.model_dump(mode="json") if identity else None})


@router.post("/auth/signin")
async def sign_in(body: SignInRequest,
                  sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    identity = await sessions.sign_in(body.email, body.password)
    return ok("Signed in successfully", {"identity": identity.model_dump(mode="json")})


@router.post("/auth/signout")
async def sign_out(sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    await sessions.sign_out()
    return ok("Signed out successfully")


@router.post("/auth/password")
async def update_password(body: PasswordUpdateRequest,
                          sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    await sessions.update_password(body.new_password)
    return ok("Password updated successfully")


@router.post("/auth/password/forgot")
async def forgot_password(body: ForgotPasswordRequest,
                          sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    await sessions.request_password_reset(body.email)
    return ok("Password reset instructions have been sent to your email")


@router.post("/auth/recovery")
async def begin_recovery(body: RecoveryRequest,
                         sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    await sessions.begin_password_recovery(body.access_token, body.refresh_token)
    return ok("Please set a new password")


@router.post("/auth/password/reset")
async def reset_password(body: PasswordResetRequest,
                         sessions: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    await sessions.complete_password_reset(body.new_password, body.confirm_password)
    return ok("Password has been reset. Please sign in with your new password.")


# 日记

@router.get("/categories")
async def list_categories(entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    counts = entries.count_by_category()
    categories = [
        CategoryInfo(name=category, description=CATEGORY_DESCRIPTIONS[category],
                     entry_count=counts[category]).model_dump(mode="json")
        for category in Category
    ]
    return ok(data=categories)


@router.get("/entries")
async def list_entries(category: Optional[Category] = None,
                       q: Optional[str] = None,
                       sessions: SessionStore = Depends(get_session_store),
                       entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    sessions.require_identity()

    if q:
        results = entries.search(q)
        if category is not None:
            results = [e for e in results if e.category == category]
    elif category is not None:
        results = entries.filter_by_category(category)
    else:
        results = entries.list_entries()

    return ok(data=[e.model_dump(mode="json") for e in results])


@router.post("/entries")
async def create_entry(body: DiaryEntryCreate,
                       entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    entry = await entries.create_entry(body)
    return ok("Entry saved successfully", entry.model_dump(mode="json"))


@router.get("/entries/{entry_id}")
async def get_entry(entry_id: str,
                    sessions: SessionStore = Depends(get_session_store),
                    entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    sessions.require_identity()
    return ok(data=entries.get_entry(entry_id).model_dump(mode="json"))


@router.patch("/entries/{entry_id}")
async def update_entry(entry_id: str, body: DiaryEntryUpdate,
                       entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    entry = await entries.update_entry(entry_id, body)
    return ok("Entry updated successfully", entry.model_dump(mode="json"))


@router.delete("/entries/{entry_id}")
async def delete_entry(entry_id: str, confirm: bool = Query(False),
                       entries: EntryStore = Depends(get_entry_store)) -> Dict[str, Any]:
    require_confirmation(confirm, "delete this entry")
    await entries.delete_entry(entry_id)
    return ok("Entry deleted successfully")


# 资料

@router.get("/profile")
async def get_profile(profiles: ProfileService = Depends(get_profile_service)) -> Dict[str, Any]:
    profile = await profiles.get_profile()
    return ok(data=profile.model_dump(mode="json"))


@router.patch("/profile")
async def update_profile(body: ProfileUpdate,
                         profiles: ProfileService = Depends(get_profile_service)) -> Dict[str, Any]:
    profile = await profiles.update_profile(body.username)
    return ok("Profile updated successfully", profile.model_dump(mode="json"))


@router.put("/profile/avatar")
async def upload_avatar(request: Request, filename: str = Query("avatar.png"),
                        profiles: ProfileService = Depends(get_profile_service)) -> Dict[str, Any]:
    data = await request.body()
    profile = await profiles.upload_avatar(data, filename, request.headers.get("content-type"))
    return ok("Avatar updated successfully!", profile.model_dump(mode="json"))


@router.delete("/profile/avatar")
async def remove_avatar(confirm: bool = Query(False),
                        profiles: ProfileService = Depends(get_profile_service)) -> Dict[str, Any]:
    require_confirmation(confirm, "remove your avatar")
    profile = await profiles.remove_avatar()
    return ok("Avatar removed successfully", profile.model_dump(mode="json"))


# 账号注销

@router.get("/account/deletion")
async def deletion_status(
        account: AccountLifecycleCoordinator = Depends(get_account_coordinator)) -> Dict[str, Any]:
    return ok(data={"state": account.state.value, "error": account.last_error})


@router.post("/account/deletion/request")
async def request_deletion(
        account: AccountLifecycleCoordinator = Depends(get_account_coordinator)) -> Dict[str, Any]:
    state = account.request_deletion()
    return ok("Please enter your password to confirm deletion", {"state": state.value})


@router.post("/account/deletion/cancel")
async def cancel_deletion(
        account: AccountLifecycleCoordinator = Depends(get_account_coordinator)) -> Dict[str, Any]:
    state = account.cancel()
    return ok("Account deletion cancelled", {"state": state.value})


@router.post("/account/deletion/confirm")
async def confirm_deletion(
        body: DeleteAccountRequest,
        account: AccountLifecycleCoordinator = Depends(get_account_coordinator)) -> Dict[str, Any]:
    result = await account.delete_account(body.password)
    if result.warnings:
        logger.warning(f"账号已注销，但有清理步骤失败: {result.warnings}")
    return ok(result.message, result.model_dump(mode="json"))
