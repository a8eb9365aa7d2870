"""
auth/codes.py -- One-time numeric verification codes.

A code belongs to one user and one purpose and moves through two states:

    Pending  --redeem-->  Redeemed (terminal, used_at set)
    Pending  --time-->    Expired  (terminal, expires_at <= now; never stored)

Issuing a new code deletes every earlier code for the same (user, purpose),
so at most one code is pending per pair. Redemption is a single conditional
UPDATE in the store, so a code is accepted at most once even under
concurrent requests.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import InvalidOrExpiredCode
from auth.models import User, VerificationCode, VerificationPurpose
from auth.store import to_iso

if TYPE_CHECKING:
    from auth.sms import SMSGateway
    from auth.store import AuthStore

logger = logging.getLogger("classsite.auth.codes")

CODE_LENGTH = 6

CODE_TTL: dict[VerificationPurpose, timedelta] = {
    VerificationPurpose.PHONE_VERIFICATION: timedelta(minutes=10),
    VerificationPurpose.TWO_FACTOR_AUTH: timedelta(minutes=10),
    VerificationPurpose.PASSWORD_RESET: timedelta(minutes=15),
}

_MESSAGES: dict[VerificationPurpose, str] = {
    VerificationPurpose.PHONE_VERIFICATION: "Your ClassSite phone confirmation code: {code}. Valid for {minutes} minutes.",
    VerificationPurpose.TWO_FACTOR_AUTH: "Your ClassSite login code: {code}. Valid for {minutes} minutes.",
    VerificationPurpose.PASSWORD_RESET: "Your ClassSite password reset code: {code}. Valid for {minutes} minutes.",
}


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return length uniformly random decimal digits."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class VerificationCodeManager:
    def __init__(self, store: AuthStore, sms: SMSGateway) -> None:
        self._store = store
        self._sms = sms

    def issue(self, user: User, purpose: VerificationPurpose) -> str:
        """Create a fresh code for (user, purpose), replace older ones, and send it.

        Delivery is best effort: a failed SMS is logged and the code is still
        returned, because it remains valid for manual entry.
        """
        ttl = CODE_TTL[purpose]
        code = generate_code()
        self._store.replace_verification_code(
            VerificationCode(
                user_id=user.id,
                code=code,
                purpose=purpose.value,
                expires_at=to_iso(datetime.now(timezone.utc) + ttl),
            )
        )
        logger.info("Issued %s code for user %s", purpose.value, user.id)

        if user.phone:
            message = _MESSAGES[purpose].format(code=code, minutes=int(ttl.total_seconds() // 60))
            result = self._sms.send(user.phone, message)
            if not result.success:
                logger.error("SMS delivery failed for user %s: %s", user.id, result.error)
        else:
            logger.warning("User %s has no phone; %s code not delivered", user.id, purpose.value)
        return code

    def redeem(self, user_id: int, purpose: VerificationPurpose, code: str) -> None:
        """Consume a pending code. Raises InvalidOrExpiredCode if none matches."""
        if not self._store.redeem_code(user_id, purpose, code):
            raise InvalidOrExpiredCode()

    def confirm_phone(self, user_id: int, code: str) -> None:
        """Redeem a PHONE_VERIFICATION code and mark the user verified, atomically."""
        if not self._store.redeem_code_and_verify_user(user_id, code):
            raise InvalidOrExpiredCode()

    def reset_password(self, user_id: int, code: str, password_hash: str) -> None:
        """Redeem a PASSWORD_RESET code and store the new hash, atomically."""
        if not self._store.redeem_code_and_set_password(user_id, code, password_hash):
            raise InvalidOrExpiredCode("Invalid or expired password reset code.")
