"""Challenge lifecycle: creation, per-factor responses, completion and closure.

A challenge is ``open`` until every required method has succeeded at least
once (``completed``), its attempt budget runs out (``exhausted``) or its
deadline passes (``expired``). Terminal states are never left. Expiry is
evaluated on read, so no sweeper is needed.

The attempt budget is enforced by the store: each response first takes a
slot with a single conditional increment, so concurrent responses to the same
challenge cannot overrun ``max_attempts``. Verification runs after the slot is
taken and outside any transaction. Once its response is recorded, the store
settles the challenge under a row lock: completion and exhaustion are both
stored transitions, and whichever lands first is final.
"""

import hashlib
import hmac
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, NoReturn, Optional, Union

from ..audit import AuditEvent, AuditEventType, AuditSink, emit
from ..config import Settings, settings as default_settings
from ..exceptions import ChallengeNotFound, DependencyFailure, InvalidFactorInput, MethodNotRequired
from ..metrics import (
    challenge_responses,
    challenges_completed,
    challenges_created,
    challenges_exhausted,
    verification_duration,
)
from ..mfa import Clock, FactorRegistry, RequestMeta
from ..models import (
    ChallengeStatus,
    ChallengeType,
    ResponseStatus,
    StepUpChallenge,
    StepUpMethod,
)
from ..models.base import as_utc, utcnow
from ..repositories import ChallengeStore, Settlement
from ..schemas import ChallengeCreated, ChallengeResult, ChallengeState
from ..security import EntropySource, default_entropy
from .policy import PolicyResolver

logger = logging.getLogger(__name__)

FAILED_MESSAGE = "Authentication failed"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class ChallengeOrchestrator:
    """Owns challenges and their response log."""

    def __init__(
        self,
        store: ChallengeStore,
        registry: FactorRegistry,
        policy: PolicyResolver,
        audit: AuditSink,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
        clock: Optional[Clock] = None,
    ):
        config = config or default_settings
        self.store = store
        self.registry = registry
        self.policy = policy
        self.audit = audit
        self.entropy = entropy or default_entropy
        self.clock = clock or utcnow

        self.ttl = timedelta(seconds=config.CHALLENGE_TTL_SECONDS)
        self.max_attempts = config.CHALLENGE_MAX_ATTEMPTS
        self.token_bytes = config.CHALLENGE_TOKEN_BYTES
        self.require_token = config.CHALLENGE_REQUIRE_TOKEN

    async def create(
        self,
        user_id: str,
        challenge_type: Union[str, ChallengeType],
        context_data: Optional[Dict[str, Any]] = None,
        required_methods: Optional[Iterable[Union[str, StepUpMethod]]] = None,
    ) -> ChallengeCreated:
        """Open a challenge for one guarded operation."""
        try:
            challenge_type = ChallengeType(challenge_type)
        except ValueError as e:
            raise InvalidFactorInput("Unknown challenge type") from e

        methods = await self.policy.resolve(user_id, challenge_type, required_methods)

        # Independent random values: the token cannot be derived from the id
        challenge_id = self.entropy.identifier()
        challenge_token = self.entropy.token_hex(self.token_bytes)
        now = self.clock()

        challenge = StepUpChallenge(
            id=challenge_id,
            user_id=user_id,
            challenge_type=challenge_type.value,
            context_data=context_data or {},
            required_methods=[m.value for m in methods],
            token_hash=hash_token(challenge_token),
            expires_at=now + self.ttl,
            attempts=0,
            max_attempts=self.max_attempts,
            is_completed=False,
            created_at=now,
            updated_at=now,
        )
        await self.store.add(challenge)

        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_CREATED,
            user_id=user_id,
            challenge_id=challenge_id,
            metadata={
                "challenge_type": challenge_type.value,
                "required_methods": challenge.required_methods,
                "context": challenge.context_data,
            },
        ))
        challenges_created.labels(challenge_type=challenge_type.value).inc()
        logger.info(
            "Step-up challenge created",
            extra={
                "challenge_id": challenge_id,
                "user_id": user_id,
                "challenge_type": challenge_type.value,
                "required_methods": challenge.required_methods,
            },
        )

        return ChallengeCreated(
            challenge_id=challenge_id,
            challenge_token=challenge_token,
            required_methods=methods,
            expires_at=challenge.expires_at,
        )

    async def _reject(
        self,
        reason: str,
        challenge_id: str,
        challenge: Optional[StepUpChallenge] = None,
        request_meta: Optional[RequestMeta] = None,
        error: Optional[Exception] = None,
    ) -> NoReturn:
        """Log the real reason, audit it, and fail with the generic error."""
        meta = request_meta or RequestMeta()
        logger.warning(
            "Step-up challenge rejected",
            extra={"challenge_id": challenge_id, "reason": reason},
        )
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_REJECTED,
            user_id=challenge.user_id if challenge else None,
            challenge_id=challenge_id,
            success=False,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={"reason": reason},
        ))
        raise error or ChallengeNotFound(reason, challenge_id)

    def _token_matches(self, challenge: StepUpChallenge, challenge_token: Optional[str]) -> bool:
        if not challenge_token:
            return False
        return hmac.compare_digest(hash_token(challenge_token), challenge.token_hash)

    async def _load(
        self,
        challenge_id: str,
        challenge_token: Optional[str],
        request_meta: Optional[RequestMeta] = None,
        token_required: bool = True,
    ) -> StepUpChallenge:
        challenge = await self.store.get(challenge_id)
        if challenge is None:
            await self._reject("not_found", challenge_id, request_meta=request_meta)
        if (token_required or challenge_token is not None) and not self._token_matches(
            challenge, challenge_token
        ):
            await self._reject("bad_token", challenge_id, challenge, request_meta)
        return challenge

    async def respond(
        self,
        challenge_id: str,
        auth_method: Union[str, StepUpMethod],
        value: str,
        request_meta: Optional[RequestMeta] = None,
        challenge_token: Optional[str] = None,
    ) -> ChallengeResult:
        """Verify one factor against an open challenge."""
        meta = request_meta or RequestMeta()
        challenge = await self._load(
            challenge_id, challenge_token, meta, token_required=self.require_token
        )

        status = challenge.status_at(self.clock())
        if status != ChallengeStatus.OPEN:
            await self._reject(status.value, challenge_id, challenge, meta)

        try:
            method = StepUpMethod(auth_method)
        except ValueError:
            method = None
        if method is None or method not in challenge.methods:
            await self._reject(
                "method_not_required",
                challenge_id,
                challenge,
                meta,
                error=MethodNotRequired(str(auth_method), challenge_id),
            )

        attempts = await self.store.reserve_attempt(challenge_id, self.clock())
        if attempts is None:
            # Closed since the read above, or every attempt is already taken
            current = await self.store.get(challenge_id)
            reason = current.status_at(self.clock()).value if current else "not_found"
            if reason == ChallengeStatus.OPEN.value:
                reason = ChallengeStatus.EXHAUSTED.value
            await self._reject(reason, challenge_id, challenge, meta)

        verifier = self.registry[method]
        try:
            with verification_duration.labels(method=method.value).time():
                is_valid = await verifier.verify(challenge.user_id, value, meta)
        except DependencyFailure as e:
            await self.store.release_attempt(challenge_id)
            logger.error(
                "Verification could not run, attempt released",
                extra={"challenge_id": challenge_id, "method": method.value, "dependency": e.dependency},
            )
            raise

        response_status = ResponseStatus.SUCCESS if is_valid else ResponseStatus.FAILED
        await self.store.record_response(
            challenge_id,
            method.value,
            response_status,
            now=self.clock(),
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        challenge_responses.labels(method=method.value, status=response_status.value).inc()

        settled = await self.store.settle(
            challenge_id, self.clock(), final=attempts >= challenge.max_attempts
        )
        if settled is None:
            await self._reject("not_found", challenge_id, challenge, meta)

        attempts_remaining = max(challenge.max_attempts - attempts, 0)

        if is_valid:
            return await self._after_success(challenge, method, settled, attempts_remaining, meta)
        return await self._after_failure(challenge, method, settled, attempts, attempts_remaining, meta)

    async def _after_success(
        self,
        challenge: StepUpChallenge,
        method: StepUpMethod,
        settled: Settlement,
        attempts_remaining: int,
        meta: RequestMeta,
    ) -> ChallengeResult:
        if settled.status == ChallengeStatus.COMPLETED:
            if settled.changed:
                await self._complete(challenge, meta)
            return ChallengeResult(
                success=True,
                challenge_completed=True,
                message="Authentication challenge completed successfully",
            )

        if settled.status == ChallengeStatus.EXHAUSTED:
            # Budget spent with factors still missing: nothing can complete it now
            if settled.changed:
                await self._exhaust(challenge, meta)
            return ChallengeResult(
                success=False,
                challenge_completed=False,
                attempts_remaining=0,
                message=FAILED_MESSAGE,
            )

        if settled.status != ChallengeStatus.OPEN:
            # Cancelled while this response was being verified
            await self._reject(settled.status.value, challenge.id, challenge, meta)

        remaining = [m for m in challenge.methods if m.value not in settled.satisfied]
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_METHOD_VERIFIED,
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={
                "auth_method": method.value,
                "remaining_methods": [m.value for m in remaining],
            },
        ))
        return ChallengeResult(
            success=True,
            challenge_completed=False,
            remaining_methods=remaining,
            message="Authentication method verified, additional methods required",
        )

    async def _after_failure(
        self,
        challenge: StepUpChallenge,
        method: StepUpMethod,
        settled: Settlement,
        attempts: int,
        attempts_remaining: int,
        meta: RequestMeta,
    ) -> ChallengeResult:
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_FAILED_ATTEMPT,
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            success=False,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={"auth_method": method.value, "attempts": attempts},
        ))
        if settled.changed and settled.status == ChallengeStatus.EXHAUSTED:
            await self._exhaust(challenge, meta)

        return ChallengeResult(
            success=False,
            challenge_completed=False,
            attempts_remaining=attempts_remaining,
            message=FAILED_MESSAGE,
        )

    async def _complete(self, challenge: StepUpChallenge, meta: RequestMeta) -> None:
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_COMPLETED,
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={
                "challenge_type": challenge.challenge_type,
                "methods": challenge.required_methods,
            },
        ))
        challenges_completed.labels(challenge_type=challenge.challenge_type).inc()
        logger.info(
            "Step-up challenge completed",
            extra={"challenge_id": challenge.id, "user_id": challenge.user_id},
        )

    async def _exhaust(self, challenge: StepUpChallenge, meta: RequestMeta) -> None:
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_EXHAUSTED,
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            success=False,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={"max_attempts": challenge.max_attempts},
        ))
        challenges_exhausted.labels(challenge_type=challenge.challenge_type).inc()
        logger.warning(
            "Step-up challenge exhausted",
            extra={"challenge_id": challenge.id, "user_id": challenge.user_id},
        )

    async def get_completed(self, challenge_id: str, challenge_token: str) -> StepUpChallenge:
        """Return the challenge if it is completed and still inside its window."""
        challenge = await self._load(challenge_id, challenge_token)
        now = self.clock()
        if not challenge.is_completed:
            await self._reject(challenge.status_at(now).value, challenge_id, challenge)
        if now > as_utc(challenge.expires_at):
            await self._reject("expired", challenge_id, challenge)
        return challenge

    async def is_completed(self, challenge_id: str, challenge_token: str) -> bool:
        """True only for a completed challenge that has not yet expired."""
        challenge = await self.store.get(challenge_id)
        if challenge is None or not self._token_matches(challenge, challenge_token):
            return False
        if not challenge.is_completed:
            return False
        return self.clock() <= as_utc(challenge.expires_at)

    async def get_state(self, challenge_id: str, challenge_token: str) -> ChallengeState:
        challenge = await self._load(challenge_id, challenge_token)
        satisfied = await self.store.satisfied_methods(challenge_id)
        status = challenge.status_at(self.clock())

        return ChallengeState(
            challenge_id=challenge.id,
            challenge_type=ChallengeType(challenge.challenge_type),
            status=status,
            required_methods=challenge.methods,
            remaining_methods=[m for m in challenge.methods if m.value not in satisfied],
            attempts_remaining=max(challenge.max_attempts - challenge.attempts, 0),
            expires_at=as_utc(challenge.expires_at),
        )

    async def cancel(
        self,
        challenge_id: str,
        challenge_token: str,
        request_meta: Optional[RequestMeta] = None,
    ) -> None:
        """Close an open challenge right away, e.g. when the user abandons it."""
        challenge = await self._load(challenge_id, challenge_token, request_meta)
        now = self.clock()
        status = challenge.status_at(now)
        if status != ChallengeStatus.OPEN or not await self.store.cancel(challenge_id, now):
            await self._reject(status.value, challenge_id, challenge, request_meta)

        meta = request_meta or RequestMeta()
        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.CHALLENGE_CANCELLED,
            user_id=challenge.user_id,
            challenge_id=challenge_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        ))
