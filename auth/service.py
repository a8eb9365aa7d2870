"""
auth/service.py -- Request-facing orchestration of the auth flows.

AuthService composes AuthStore, TokenManager and VerificationCodeManager into
the flows the HTTP layer exposes: login, logout, refresh, registration,
profile, phone verification, password reset, user management and first-admin
bootstrap.

Every method either returns a result or raises an auth.errors.AuthError
subclass; api/main.py renders those uniformly. Identity arrives explicitly as
a RequestContext built per request by auth/dependencies.py -- there is no
module-level "current user".

Security:
  [C1] Login failures are indistinguishable: unknown login and wrong password
       raise the same InvalidCredentials after the same amount of bcrypt work.
  [V1] Verification codes are only returned to the caller when
       Settings.echo_verification_codes is true (DEBUG + explicit opt-in).
  [R1] Only ADMIN may grant or change roles, and a TEACHER may not touch an
       ADMIN account. Self-registration is limited to STUDENT and PARENT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.codes import VerificationCodeManager
from auth.errors import Conflict, Forbidden, InvalidCredentials, NotFound, Unauthenticated, ValidationError
from auth.models import (
    AdminUserChanges,
    LoginAttempt,
    NewAccount,
    ProfileChanges,
    RequestContext,
    Role,
    User,
    UserUpdate,
    VerificationPurpose,
)
from auth.permissions import has_permission, is_known_role, role_rank
from auth.tokens import TokenManager, check_credentials, hash_password, verify_password
from auth.validators import (
    PASSWORD_RULES_MESSAGE,
    is_password_strong,
    is_valid_email,
    is_valid_phone,
    normalize_email,
    normalize_phone,
)

if TYPE_CHECKING:
    from auth.store import AuthStore
    from core.config import Settings

logger = logging.getLogger("classsite.auth")

SELF_REGISTRATION_ROLES = {Role.STUDENT.value, Role.PARENT.value}
# Purposes served by the /auth/verify flow; PASSWORD_RESET has its own.
PHONE_CODE_PURPOSES = {VerificationPurpose.PHONE_VERIFICATION, VerificationPurpose.TWO_FACTOR_AUTH}
MAX_PAGE_SIZE = 100


@dataclass
class LoginResult:
    user: User
    access_token: str
    refresh_token: str


@dataclass
class CodeIssueResult:
    message: str
    code: str | None = None


class AuthService:
    def __init__(
        self,
        settings: Settings,
        store: AuthStore,
        tokens: TokenManager,
        codes: VerificationCodeManager,
    ) -> None:
        self.settings = settings
        self.store = store
        self.tokens = tokens
        self.codes = codes

    # ------------------------------------------------------------------
    # Session flows
    # ------------------------------------------------------------------

    def login(self, login: str | None, password: str | None, ctx: RequestContext) -> LoginResult:
        if not login or not password:
            raise ValidationError("Login and password are required.")

        user = self.store.find_by_login_identifier(login.strip())
        if not check_credentials(user, password):  # [C1]
            self.store.record_login_attempt(
                LoginAttempt(
                    success=False,
                    user_id=user.id if user else None,
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                )
            )
            logger.info("Failed login from %s", ctx.ip_address)
            raise InvalidCredentials()

        self.store.record_login_attempt(
            LoginAttempt(success=True, user_id=user.id, ip_address=ctx.ip_address, user_agent=ctx.user_agent)
        )
        self.store.touch_last_login(user.id)
        access = self.tokens.issue_access_token(user.id, user.full_name, user.role)
        refresh = self.tokens.issue_refresh_session(user.id)
        logger.info("User %s logged in from %s", user.id, ctx.ip_address)
        return LoginResult(user=self.store.get_by_id(user.id) or user, access_token=access, refresh_token=refresh)

    def logout(self, refresh_token: str | None) -> None:
        """Revoke the refresh session if there is one. Never fails."""
        try:
            self.tokens.revoke(refresh_token)
        except SQLAlchemyError:
            logger.exception("Could not revoke refresh session on logout")

    def refresh(self, refresh_token: str | None) -> LoginResult:
        rotated = self.tokens.rotate_refresh_session(refresh_token)
        if rotated is None:
            raise Unauthenticated("Session expired. Please log in again.")
        user, new_refresh = rotated
        access = self.tokens.issue_access_token(user.id, user.full_name, user.role)
        return LoginResult(user=user, access_token=access, refresh_token=new_refresh)

    # ------------------------------------------------------------------
    # Registration and profile
    # ------------------------------------------------------------------

    def register(self, account: NewAccount) -> User:
        """Create a self-registered, unverified account. Does not log in."""
        role = account.role or Role.STUDENT.value
        if not is_known_role(role):
            raise ValidationError("Unknown role.")
        if role not in SELF_REGISTRATION_ROLES:  # [R1]
            raise ValidationError("This role cannot be chosen at registration.")
        return self._create_account(account, role=role, is_verified=False)

    def init_admin(self, account: NewAccount) -> User:
        """Create the first administrator. Refused once any admin exists."""
        if self.store.has_admin():
            raise Conflict("Administrator already exists.")
        user = self._create_account(account, role=Role.ADMIN.value, is_verified=True)
        logger.info("Initial administrator created (user %s)", user.id)
        return user

    def get_profile(self, ctx: RequestContext) -> User:
        user_id = self._require_identity(ctx)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    def update_profile(self, ctx: RequestContext, changes: ProfileChanges) -> User:
        user_id = self._require_identity(ctx)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound()

        update = UserUpdate()
        if changes.full_name and changes.full_name.strip() and changes.full_name.strip() != user.full_name:
            update.full_name = changes.full_name.strip()

        if changes.phone:
            if not is_valid_phone(changes.phone):
                raise ValidationError("Invalid phone format.")
            phone = normalize_phone(changes.phone)
            if phone != user.phone:
                update.phone = phone

        if changes.email:
            if not is_valid_email(changes.email):
                raise ValidationError("Invalid email format.")
            email = normalize_email(changes.email)
            if email != user.email:
                update.email = email

        if changes.new_password:
            if not changes.current_password:
                raise ValidationError("Current password is required to set a new password.")
            if not verify_password(changes.current_password, user.password_hash):
                raise ValidationError("Current password is incorrect.")
            if not is_password_strong(changes.new_password):
                raise ValidationError(PASSWORD_RULES_MESSAGE)
            update.password_hash = hash_password(changes.new_password)

        return self.store.update_user(user_id, update)

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def request_phone_verification(
        self,
        phone: str | None,
        purpose: VerificationPurpose = VerificationPurpose.PHONE_VERIFICATION,
    ) -> CodeIssueResult:
        _check_phone_code_purpose(purpose)
        user = self._user_by_phone(phone, missing_message="No user with this phone number.")
        code = self.codes.issue(user, purpose)
        return self._issued("Verification code sent.", code)

    def confirm_phone_verification(
        self,
        phone: str | None,
        code: str | None,
        purpose: VerificationPurpose = VerificationPurpose.PHONE_VERIFICATION,
    ) -> None:
        """Redeem a code sent by request_phone_verification().

        A PHONE_VERIFICATION code also marks the user verified; a
        TWO_FACTOR_AUTH code is only consumed.
        """
        _check_phone_code_purpose(purpose)
        if not phone or not code:
            raise ValidationError("Phone and code are required.")
        user = self._user_by_phone(phone)
        if purpose == VerificationPurpose.TWO_FACTOR_AUTH:
            self.codes.redeem(user.id, purpose, code.strip())
            logger.info("Two-factor code confirmed for user %s", user.id)
            return
        self.codes.confirm_phone(user.id, code.strip())
        logger.info("Phone verified for user %s", user.id)

    def request_password_reset(self, phone: str | None) -> CodeIssueResult:
        user = self._user_by_phone(phone, missing_message="No user with this phone number.")
        code = self.codes.issue(user, VerificationPurpose.PASSWORD_RESET)
        return self._issued("Password reset code sent to your phone.", code)

    def confirm_password_reset(self, phone: str | None, code: str | None, new_password: str | None) -> None:
        if not phone or not code or not new_password:
            raise ValidationError("Phone, code and new password are required.")
        if not is_password_strong(new_password):
            raise ValidationError(PASSWORD_RULES_MESSAGE)
        user = self._user_by_phone(phone)
        self.codes.reset_password(user.id, code.strip(), hash_password(new_password))
        logger.info("Password reset completed for user %s", user.id)

    # ------------------------------------------------------------------
    # User management (TEACHER and above)
    # ------------------------------------------------------------------

    def list_users(
        self,
        ctx: RequestContext,
        search: str | None = None,
        role: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[User], int]:
        self._require_role(ctx, Role.TEACHER)
        if role and not is_known_role(role):
            role = None
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        return self.store.list_users(search=search, role=role, page=page, limit=limit)

    def get_user(self, ctx: RequestContext, user_id: int) -> User:
        self._require_role(ctx, Role.TEACHER)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    def create_user(self, ctx: RequestContext, account: NewAccount) -> User:
        self._require_role(ctx, Role.TEACHER)
        role = account.role or Role.STUDENT.value
        if not is_known_role(role):
            raise ValidationError("Unknown role.")
        if role == Role.ADMIN.value:
            self._require_role(ctx, Role.ADMIN)  # [R1]
        user = self._create_account(account, role=role, is_verified=False)
        logger.info("User %s created by user %s", user.id, ctx.user_id)
        return user

    def update_user(self, ctx: RequestContext, user_id: int, changes: AdminUserChanges) -> User:
        self._require_role(ctx, Role.TEACHER)
        target = self.store.get_by_id(user_id)
        if target is None:
            raise NotFound()
        if role_rank(target.role) > role_rank(ctx.role):  # [R1]
            raise Forbidden("You cannot edit a user with a higher role.")

        update = UserUpdate()
        if changes.full_name is not None:
            if not changes.full_name.strip():
                raise ValidationError("Full name cannot be empty.")
            update.full_name = changes.full_name.strip()

        if changes.is_active is not None:
            if not changes.is_active and target.id == ctx.user_id:
                raise ValidationError("You cannot deactivate your own account.")
            update.is_active = changes.is_active

        if changes.role is not None and changes.role != target.role:
            if not is_known_role(changes.role):
                raise ValidationError("Unknown role.")
            self._require_role(ctx, Role.ADMIN)  # [R1]
            update.role = changes.role

        if changes.phone is not None:
            if changes.phone == "":
                update.clear_phone = target.phone is not None
            elif not is_valid_phone(changes.phone):
                raise ValidationError("Invalid phone format.")
            elif normalize_phone(changes.phone) != target.phone:
                update.phone = normalize_phone(changes.phone)

        if changes.email is not None:
            if changes.email == "":
                update.clear_email = target.email is not None
            elif not is_valid_email(changes.email):
                raise ValidationError("Invalid email format.")
            elif normalize_email(changes.email) != target.email:
                update.email = normalize_email(changes.email)

        remaining_phone = None if update.clear_phone else (update.phone or target.phone)
        remaining_email = None if update.clear_email else (update.email or target.email)
        if not remaining_phone and not remaining_email:
            raise ValidationError("A user needs a phone number or an email.")

        if changes.password:
            if not is_password_strong(changes.password):
                raise ValidationError(PASSWORD_RULES_MESSAGE)
            update.password_hash = hash_password(changes.password)

        updated = self.store.update_user(user_id, update)
        logger.info("User %s updated by user %s", user_id, ctx.user_id)
        return updated

    def delete_user(self, ctx: RequestContext, user_id: int) -> None:
        self._require_role(ctx, Role.ADMIN)
        if self.store.get_by_id(user_id) is None:
            raise NotFound()
        if user_id == ctx.user_id:
            raise ValidationError("You cannot delete your own account.")
        self.store.delete_user(user_id)
        logger.info("User %s deleted by user %s", user_id, ctx.user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_account(self, account: NewAccount, role: str, is_verified: bool) -> User:
        full_name = (account.full_name or "").strip()
        if not full_name or not account.password:
            raise ValidationError("Full name and password are required.")
        if not account.phone and not account.email:
            raise ValidationError("A phone number or an email is required.")
        if account.phone and not is_valid_phone(account.phone):
            raise ValidationError("Invalid phone format.")
        if account.email and not is_valid_email(account.email):
            raise ValidationError("Invalid email format.")
        if not is_password_strong(account.password):
            raise ValidationError(PASSWORD_RULES_MESSAGE)

        user_id = self.store.create_user(
            User(
                full_name=full_name,
                phone=normalize_phone(account.phone) if account.phone else None,
                email=normalize_email(account.email) if account.email else None,
                password_hash=hash_password(account.password),
                role=role,
                is_verified=is_verified,
            )
        )
        created = self.store.get_by_id(user_id)
        if created is None:
            raise NotFound()
        return created

    def _user_by_phone(self, phone: str | None, missing_message: str = "User not found.") -> User:
        if not phone:
            raise ValidationError("Phone is required.")
        user = self.store.get_by_phone(phone)
        if user is None:
            raise NotFound(missing_message)
        return user

    def _issued(self, message: str, code: str) -> CodeIssueResult:
        if self.settings.echo_verification_codes:  # [V1]
            return CodeIssueResult(message=message, code=code)
        return CodeIssueResult(message=message)

    @staticmethod
    def _require_identity(ctx: RequestContext) -> int:
        if ctx.user_id is None:
            raise Unauthenticated()
        return ctx.user_id

    @staticmethod
    def _require_role(ctx: RequestContext, required: Role) -> None:
        if ctx.user_id is None:
            raise Unauthenticated()
        if not has_permission(ctx.role, required):
            raise Forbidden()


def _check_phone_code_purpose(purpose: VerificationPurpose) -> None:
    if purpose not in PHONE_CODE_PURPOSES:
        raise ValidationError("This code type is not accepted here.")
